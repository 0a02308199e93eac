"""Example: drive ingestion through the service layer (no Flask).

Controllers stay thin; the orchestrator and health service hold the logic.
"""

import importlib
import json

from config import get_settings_module

from src.timekeeping.timekeeping.common.datetime_utils import now_local
from src.timekeeping.timekeeping.container import build_container_from_settings


def main():
    settings = importlib.import_module(get_settings_module())
    container = build_container_from_settings(settings)

    report = container.orchestrator.run_cycle(now=now_local(), batch_limit=50)
    print(json.dumps(report.as_dict(), indent=2))
    print(json.dumps(container.health_service.report(now=now_local()).as_dict(), indent=2))


if __name__ == "__main__":
    main()
