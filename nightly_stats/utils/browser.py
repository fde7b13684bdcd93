"""
External browser launching for the page-verification fallback.
"""
import logging
import os
import subprocess
import webbrowser
from typing import Callable, List, Optional, Sequence

logger = logging.getLogger(__name__)


def default_alternate_browser_paths() -> List[str]:
    """Well-known Chrome install locations for Windows, Linux and macOS."""
    paths = [
        r'C:\Program Files\Google\Chrome\Application\chrome.exe',
        r'C:\Program Files (x86)\Google\Chrome\Application\chrome.exe',
    ]
    local_app_data = os.environ.get('LOCALAPPDATA')
    if local_app_data:
        paths.append(local_app_data + r'\Google\Chrome\Application\chrome.exe')
    paths += [
        '/usr/bin/google-chrome',
        '/Applications/Google Chrome.app/Contents/MacOS/Google Chrome',
    ]
    return paths


class BrowserLauncher:
    """
    Opens a URL outside the app: an alternate browser when one is
    installed at a known path, otherwise the system default browser.
    """

    def __init__(
        self,
        alternate_paths: Optional[Sequence[str]] = None,
        path_exists: Callable[[str], bool] = os.path.isfile,
        spawn: Callable[[List[str]], object] = subprocess.Popen,
        open_default: Callable[[str], object] = webbrowser.open
    ):
        self.alternate_paths = list(alternate_paths) if alternate_paths else default_alternate_browser_paths()
        self._path_exists = path_exists
        self._spawn = spawn
        self._open_default = open_default

    def find_alternate(self) -> Optional[str]:
        """First alternate browser executable that exists, or None."""
        for path in self.alternate_paths:
            if self._path_exists(path):
                return path
        return None

    def open_default(self, url: str) -> str:
        """Open url in the default browser."""
        logger.info(f"Opening {url} in default browser")
        self._open_default(url)
        return 'default'

    def open(self, url: str, prefer_alternate: bool = True) -> str:
        """
        Open url with exactly one launcher.

        Returns:
            'alternate' if an alternate browser was spawned, else 'default'
        """
        if prefer_alternate:
            path = self.find_alternate()
            if path:
                try:
                    self._spawn([path, url])
                    logger.info(f"Opened {url} in {path}")
                    return 'alternate'
                except OSError as e:
                    logger.error(f"Error opening alternate browser {path}: {e}")
        return self.open_default(url)
