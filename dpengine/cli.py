from __future__ import annotations

import argparse
import json
import sys
from typing import Any, List, Optional

from dpengine.core.audit.formatter import format_line
from dpengine.core.config.manager import ConfigManager
from dpengine.core.config.paths import ConfigFsPaths
from dpengine.core.context import RequestContext
from dpengine.core.engine import ComplianceEngine, build_engine
from dpengine.core.errors import DpEngineError
from dpengine.core.logger import setup_logging

EXIT_OK = 0
EXIT_ERROR = 2
EXIT_NOT_COMPLIANT = 3


def _dump(obj: Any) -> str:
    return json.dumps(obj, indent=2, sort_keys=True, ensure_ascii=False)


def _build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="dpengine", description="Data-protection compliance engine admin CLI")
    ap.add_argument("--root", default=".", help="Root directory holding config/ and data/.")
    ap.add_argument("--actor", default="cli", help="Actor recorded on audit events.")
    sub = ap.add_subparsers(dest="command", required=True)

    sub.add_parser("print-config", help="Print the effective configuration.")

    p = sub.add_parser("check", help="Evaluate a registered processing activity.")
    p.add_argument("processing_id")
    p.add_argument("--rule-set", default=None, help="gdpr | lgpd (default from config).")

    p = sub.add_parser("rights-check", help="Evaluate data-subject rights readiness.")
    p.add_argument("subject_id")
    p.add_argument("--rule-set", default=None)

    p = sub.add_parser("export", help="Export a portability report.")
    p.add_argument("subject_id")
    p.add_argument("--out", default=None, help="Write the report to this file instead of stdout.")

    p = sub.add_parser("erase", help="Erase a data subject and its consents.")
    p.add_argument("subject_id")

    p = sub.add_parser("audit", help="Query the audit trail.")
    p.add_argument("--subject", default=None)
    p.add_argument("--action", default=None)
    p.add_argument("--since", type=float, default=None, help="Unix timestamp (inclusive).")
    p.add_argument("--until", type=float, default=None, help="Unix timestamp (inclusive).")
    p.add_argument("--limit", type=int, default=None)
    p.add_argument("--json", action="store_true", help="Emit JSON instead of formatted lines.")
    return ap


def _open_engine(cm: ConfigManager, logger) -> ComplianceEngine:
    cfg = cm.get()
    return build_engine(cfg, sqlite_path=cm.resolve_path(cfg.store.sqlite_path), logger=logger)


def main(argv: Optional[List[str]] = None) -> int:
    args = _build_parser().parse_args(argv)
    cm = ConfigManager(fs=ConfigFsPaths(args.root))
    try:
        cfg = cm.load()
        if args.command == "print-config":
            print(_dump(cfg.model_dump(mode="json")))
            return EXIT_OK

        logger = setup_logging(cm.resolve_path(cfg.logging.log_dir), cfg.logging.level)
        cm.logger = logger
        engine = _open_engine(cm, logger)
        ctx = RequestContext(actor=str(args.actor), ip_address="system", user_agent="dpengine-cli")

        if args.command == "check":
            res = engine.regulation.check_processing_by_id(args.processing_id, args.rule_set)
            print(_dump(res.model_dump(mode="json")))
            return EXIT_OK if res.passed else EXIT_NOT_COMPLIANT

        if args.command == "rights-check":
            res = engine.regulation.check_data_subject_rights(args.subject_id, args.rule_set)
            print(_dump(res.model_dump(mode="json")))
            return EXIT_OK if res.passed else EXIT_NOT_COMPLIANT

        if args.command == "export":
            report = engine.rights.export_portability_report(args.subject_id, context=ctx)
            text = _dump(report.model_dump(mode="json"))
            if args.out:
                with open(args.out, "w", encoding="utf-8") as f:
                    f.write(text + "\n")
                print(args.out)
            else:
                print(text)
            return EXIT_OK

        if args.command == "erase":
            res = engine.rights.erase(args.subject_id, context=ctx)
            print(_dump(res.model_dump(mode="json")))
            return EXIT_OK

        if args.command == "audit":
            limit = args.limit if args.limit is not None else cfg.audit.default_limit
            unfiltered = args.subject is None and args.action is None and args.since is None and args.until is None
            if unfiltered and not args.json:
                for line in engine.audit.tail_formatted(limit):
                    print(line)
                return EXIT_OK
            events = engine.audit.query(
                {
                    "subject_id": args.subject,
                    "action": args.action,
                    "from_ts": args.since,
                    "to_ts": args.until,
                    "limit": limit,
                }
            )
            if args.json:
                print(_dump([e.model_dump(mode="json") for e in events]))
            else:
                for ev in reversed(events):
                    print(format_line(ev))
            return EXIT_OK
    except DpEngineError as e:
        print(_dump(e.to_dict()), file=sys.stderr)
        return EXIT_ERROR
    return EXIT_ERROR


if __name__ == "__main__":
    raise SystemExit(main())
