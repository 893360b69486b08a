"""
main.py — Server launcher.

    python main.py

Host, port and hot-reload come from SERVER_HOST / SERVER_PORT / SERVER_RELOAD
(see rental_inventory/utils/config.py). Application wiring lives in app.py.

Direct uvicorn usage:
    uvicorn app:app --reload
"""

from __future__ import annotations

import uvicorn

from rental_inventory.utils.config import get_settings


def main() -> None:
    settings = get_settings()
    base_url = f"http://{settings.server_host}:{settings.server_port}"

    print("=" * 60)
    print(f"  {settings.app_name} v{settings.app_version}")
    print("=" * 60)
    print(f"  Database : {settings.database_path}")
    print(f"  Inventory: {base_url}/inventory?start_date=YYYY-MM-DD&end_date=YYYY-MM-DD")
    print(f"  Status   : {base_url}/inventory/status")
    print(f"  API docs : {base_url}/docs")
    print("=" * 60)

    uvicorn.run(
        "app:app",
        host=settings.server_host,
        port=settings.server_port,
        reload=settings.server_reload,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
