from __future__ import annotations

import sys
from pathlib import Path
import sys as _sys

from PySide6 import QtWidgets

# Support running as `python -m imgvid.main` and `python imgvid/main.py`
if __package__ in (None, ""):
    _this_dir = Path(__file__).resolve().parent
    _parent = _this_dir.parent
    if str(_parent) not in _sys.path:
        _sys.path.insert(0, str(_parent))
    from imgvid.core.config import SettingsStore, app_data_dir  # type: ignore
    from imgvid.core.logging_config import configure_logging  # type: ignore
    from imgvid.ui.main_window import MainWindow  # type: ignore
else:
    from .core.config import SettingsStore, app_data_dir
    from .core.logging_config import configure_logging
    from .ui.main_window import MainWindow


def main() -> int:
    """Entry point to start the Qt application."""
    app = QtWidgets.QApplication(sys.argv)
    app.setApplicationName("ImageVideo")
    app.setOrganizationName("ImageVideo")

    store = SettingsStore()
    settings = store.load()
    configure_logging(app_data_dir() / "logs", settings.log_level)

    window = MainWindow(store)
    window.resize(900, 700)
    window.show()
    return app.exec()


if __name__ == "__main__":
    sys.exit(main())
