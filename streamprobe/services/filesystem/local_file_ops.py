from __future__ import annotations

import shutil
from pathlib import Path
from typing import List, Optional

from streamprobe.common.logging import get_logger
from streamprobe.domain.ports.files import FileOpsPort

logger = get_logger(__name__)


class LocalFileOps(FileOpsPort):
    """
    Local filesystem implementation for FileOpsPort.
    """

    def ensure_dir(self, path: Path) -> None:
        Path(path).mkdir(parents=True, exist_ok=True)

    def copy_to_dest(self, src: Path, *dest_dirs: Path | str) -> List[Path]:
        """
        Copy `src` into every destination directory we can create or write.
        Destinations that fail are skipped; raises only if none accepted it.
        """
        src_p = Path(src)
        if not src_p.is_file():
            raise FileNotFoundError(f"Source file not found: {src_p}")

        copied: List[Path] = []
        failures: List[str] = []
        for d in dest_dirs:
            dst_dir = Path(d)
            dst_p = dst_dir / src_p.name
            try:
                dst_dir.mkdir(parents=True, exist_ok=True)
                if dst_p.exists() and dst_p.samefile(src_p):
                    copied.append(dst_p)
                    continue
                shutil.copyfile(src_p, dst_p)
            except OSError as e:
                failures.append(f"{dst_dir}: {e}")
                logger.debug("skip copy of %s to %s: %s", src_p, dst_dir, e)
                continue
            copied.append(dst_p)
            logger.info("copied %s to %s", src_p, dst_p)

        if not copied:
            raise OSError(f"Cannot copy {src_p} to any of {list(dest_dirs)}: {'; '.join(failures)}")
        return copied

    def find_existing_file(self, name: str, *dirs: Path | str) -> Optional[Path]:
        """First `<dir>/<name>` that exists, in argument order."""
        for d in dirs:
            p = Path(d) / name
            if p.is_file():
                return p
        return None

    def remove_file(self, path: Path) -> bool:
        p = Path(path)
        try:
            p.unlink()
        except FileNotFoundError:
            return False
        return True
