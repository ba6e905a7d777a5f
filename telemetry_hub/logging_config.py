import json
import logging
import os
import re
import socket

from .settings import Settings

# attributes every LogRecord carries; anything else came in through `extra=`
_RESERVED = set(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime"}


def _instance_id() -> str:
    try:
        with open("/proc/self/cgroup", encoding="utf-8") as fh:
            match = re.search(r"/docker/([a-f0-9]{64}|[a-f0-9]{12})", fh.read())
        if match:
            return match.group(1)[:12]
    except OSError:
        pass
    return os.getenv("HOSTNAME") or socket.gethostname()


class JsonFormatter(logging.Formatter):
    def __init__(self, instance_id: str):
        super().__init__()
        self.instance_id = instance_id

    def format(self, record):
        log_record = {
            "timestamp": self.formatTime(record, "%Y-%m-%dT%H:%M:%S%z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "instanceId": self.instance_id,
        }
        for key, value in vars(record).items():
            if key not in _RESERVED and not key.startswith("_"):
                log_record[key] = value
        if record.exc_info:
            log_record["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(log_record, default=str)


def configure_logging(settings: Settings) -> None:
    handler = logging.StreamHandler()
    if settings.log_json:
        handler.setFormatter(JsonFormatter(_instance_id()))
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s"))

    handler.set_name("telemetry_hub")

    root = logging.getLogger()
    for existing in list(root.handlers):
        if existing.get_name() == "telemetry_hub":
            root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(settings.log_level.upper())
