from __future__ import annotations
from pathlib import Path
from typing import List, Optional, Protocol

class FileOpsPort(Protocol):
    def ensure_dir(self, path: Path) -> None: ...
    def copy_to_dest(self, src: Path, *dest_dirs: Path | str) -> List[Path]: ...
    def find_existing_file(self, name: str, *dirs: Path | str) -> Optional[Path]: ...
    def remove_file(self, path: Path) -> bool: ...
