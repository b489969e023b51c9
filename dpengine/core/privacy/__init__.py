from dpengine.core.privacy.consents import ConsentLedger
from dpengine.core.privacy.processing import ProcessingRegistry
from dpengine.core.privacy.rights import RightsCoordinator
from dpengine.core.privacy.subjects import DataSubjectRegistry

__all__ = ["ConsentLedger", "DataSubjectRegistry", "ProcessingRegistry", "RightsCoordinator"]
