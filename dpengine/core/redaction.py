from __future__ import annotations

from typing import Any, Dict


REDACT_KEYS = {
    "passphrase",
    "password",
    "secret",
    "token",
    "api_key",
    "authorization",
}

# Personal identifiers never written to the engine's own log lines.
PERSONAL_KEYS = {"document", "email", "phone", "address", "birth_date", "user_agent"}

IP_KEYS = {"ip", "ip_address", "client_ip"}


def _mask_ip(ip: str) -> str:
    # keep /24 only for IPv4; otherwise return "ip".
    parts = ip.split(".")
    if len(parts) == 4:
        return ".".join(parts[:3] + ["x"])
    if ip in {"", "system"}:
        return ip
    return "ip"


def redact(obj: Any) -> Any:
    if isinstance(obj, dict):
        out: Dict[str, Any] = {}
        for k, v in obj.items():
            kk = str(k).lower()
            if kk in REDACT_KEYS:
                out[k] = "***REDACTED***"
            elif kk in PERSONAL_KEYS:
                out[k] = "***PERSONAL***" if v else v
            elif kk in IP_KEYS and isinstance(v, str):
                out[k] = _mask_ip(v)
            else:
                out[k] = redact(v)
        return out
    if isinstance(obj, (list, tuple)):
        return [redact(x) for x in obj]
    return obj
