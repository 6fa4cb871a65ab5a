"""Keep relative README links working after the README is copied elsewhere."""

from __future__ import annotations

import re
import shutil
from pathlib import Path, PurePosixPath
from typing import List

from ..logging import get_logger

logger = get_logger("postproc.links")


class LocalLinkCopier:
    """Copies the local targets of Markdown links and images next to a copied README."""

    _LINK_PATTERN = re.compile(r"\[([^\]]*)\]\(([^)]+)\)")

    def find_local_links(self, markdown: str) -> List[str]:
        """Return relative link targets, without anchors, queries or titles."""
        links: List[str] = []
        for match in self._LINK_PATTERN.finditer(markdown):
            parts = match.group(2).strip().split()
            if not parts:
                continue
            target = parts[0].strip("<>")
            if target.startswith(("http://", "https://", "mailto:", "#", "/")) or "://" in target:
                continue
            cleaned = target.split("#", 1)[0].split("?", 1)[0]
            if not cleaned:
                continue
            normalized = PurePosixPath(cleaned.replace("\\", "/"))
            if normalized.is_absolute() or ".." in normalized.parts:
                continue
            if str(normalized) not in links:
                links.append(str(normalized))
        return links

    def copy(self, original: Path, copied: Path) -> List[Path]:
        """Copy targets linked from ``copied`` so they resolve relative to it."""
        base = original.parent
        new_base = copied.parent
        written: List[Path] = []
        for link in self.find_local_links(copied.read_text(encoding="utf-8", errors="replace")):
            source = base / link
            destination = new_base / link
            if not source.exists():
                logger.debug("Link target not found: %s", link)
                continue
            destination.parent.mkdir(parents=True, exist_ok=True)
            if source.is_dir():
                shutil.copytree(source, destination, dirs_exist_ok=True)
            else:
                shutil.copy2(source, destination)
            written.append(destination)
        return written


def copy_local_links(original: Path, copied: Path) -> List[Path]:
    return LocalLinkCopier().copy(original, copied)


__all__ = ["LocalLinkCopier", "copy_local_links"]
