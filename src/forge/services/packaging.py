from __future__ import annotations

import io
import json
import zipfile
from typing import Dict, List, Optional, Tuple

from ..domain.models import Fragment

NEXTJS_PACKAGE_DEPENDENCIES: Dict[str, str] = {
    "next": "^14.2.30",
    "react": "^18",
    "react-dom": "^18",
    "typescript": "^5.5.4",
    "@types/node": "^22.2.0",
    "@types/react": "^18",
    "@types/react-dom": "^18",
    "tailwindcss": "^3.4.1",
    "postcss": "^8",
}


def archive_name(fragment: Fragment) -> str:
    return f"{fragment.title or 'fragment'}.zip"


def archive_path(path: Optional[str], fallback: str) -> str:
    """Relative archive member name for a generated file path.

    Drive prefixes, leading slashes and ``.``/``..`` segments are dropped so
    every entry stays under the archive root.
    """

    parts = (path or "").replace("\\", "/").split("/")
    if parts and parts[0].endswith(":"):
        parts = parts[1:]
    kept = [p for p in parts if p not in ("", ".", "..")]
    return "/".join(kept) or fallback


def fragment_entries(fragment: Fragment) -> List[Tuple[str, str]]:
    """Files to place in the archive, in fragment order.

    Multi-file fragments fall back to ``file.txt`` for entries without a
    path; single-file fragments fall back to ``fragment.txt``.
    """

    if isinstance(fragment.code, list):
        return [(archive_path(f.file_path, "file.txt"), f.file_content or "") for f in fragment.code]
    return [(archive_path(fragment.file_path, "fragment.txt"), fragment.code or "")]


def nextjs_package_json(fragment: Fragment) -> str:
    package = {
        "name": fragment.title or "fragment-app",
        "version": "1.0.0",
        "private": True,
        "scripts": {"dev": "next dev", "build": "next build", "start": "next start", "lint": "next lint"},
        "dependencies": NEXTJS_PACKAGE_DEPENDENCIES,
    }
    return json.dumps(package, indent=2)


def fragment_to_zip(fragment: Fragment) -> bytes:
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, mode="w", compression=zipfile.ZIP_DEFLATED) as zf:
        written = set()
        for path, content in fragment_entries(fragment):
            zf.writestr(path, content)
            written.add(path)
        if fragment.template == "nextjs-developer" and "package.json" not in written:
            zf.writestr("package.json", nextjs_package_json(fragment))
    return buf.getvalue()
