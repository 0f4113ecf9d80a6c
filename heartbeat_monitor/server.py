from __future__ import annotations

import uvicorn

from heartbeat_monitor.app import create_app
from heartbeat_monitor.logs import configure_logging
from heartbeat_monitor.settings import MonitorSettings


def main(settings: MonitorSettings | None = None) -> None:
    settings = settings or MonitorSettings()
    configure_logging(settings.log_level)
    app = create_app(settings)
    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    main()
