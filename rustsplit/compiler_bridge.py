"""Optional compiler-bridge worker used for import suggestions.

The worker is an external binary invoked as::

    <binary> --workspace-root <path> --file <path>

and prints one JSON object on stdout. Any failure (missing binary,
timeout, non-zero exit, malformed JSON) yields an empty result so callers
fall back to heuristic import resolution.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional


@dataclass
class ExternalCrate:
    name: str
    version: str = ""


@dataclass
class BridgeDiagnostic:
    level: str
    message: str
    span: Optional[Dict[str, Any]] = None


@dataclass
class WorkerResult:
    file: str
    suggested_imports: List[str] = field(default_factory=list)
    external_crates: List[ExternalCrate] = field(default_factory=list)
    diagnostics: List[BridgeDiagnostic] = field(default_factory=list)
    unresolved_types: List[str] = field(default_factory=list)

    @classmethod
    def empty(cls, file_path: Path) -> "WorkerResult":
        return cls(file=str(file_path))

    @classmethod
    def from_dict(cls, data: Dict[str, Any], file_path: Path) -> "WorkerResult":
        return cls(
            file=str(data.get("file") or file_path),
            suggested_imports=[str(s) for s in data.get("suggested_imports") or []],
            external_crates=[
                ExternalCrate(name=c.get("name", ""), version=c.get("version", ""))
                for c in data.get("external_crates") or []
                if isinstance(c, dict)
            ],
            diagnostics=[
                BridgeDiagnostic(
                    level=d.get("level", ""),
                    message=d.get("message", ""),
                    span=d.get("span"),
                )
                for d in data.get("diagnostics") or []
                if isinstance(d, dict)
            ],
            unresolved_types=[str(t) for t in data.get("unresolved_types") or []],
        )


class CompilerBridge:
    """Async wrapper around the worker binary."""

    def __init__(
        self,
        binary: Optional[str],
        workspace_root: Path,
        timeout: float = 120.0,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.binary = binary
        self.workspace_root = Path(workspace_root)
        self.timeout = timeout
        self.logger = logger or logging.getLogger(__name__)

    @property
    def enabled(self) -> bool:
        return bool(self.binary)

    async def run(self, file_path: Path) -> WorkerResult:
        if not self.binary:
            return WorkerResult.empty(file_path)

        cmd = [
            str(self.binary),
            "--workspace-root", str(self.workspace_root),
            "--file", str(file_path),
        ]
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            self.logger.warning("Compiler bridge could not start: %s", exc)
            return WorkerResult.empty(file_path)

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
            self.logger.warning("Compiler bridge timed out after %ss", self.timeout)
            return WorkerResult.empty(file_path)

        if process.returncode != 0:
            self.logger.warning(
                "Compiler bridge exited with %s: %s",
                process.returncode, stderr.decode("utf-8", errors="replace").strip(),
            )
            return WorkerResult.empty(file_path)

        try:
            payload = json.loads(stdout.decode("utf-8", errors="replace"))
        except json.JSONDecodeError as exc:
            self.logger.warning("Compiler bridge returned malformed JSON: %s", exc)
            return WorkerResult.empty(file_path)
        if not isinstance(payload, dict):
            self.logger.warning("Compiler bridge returned %s, expected an object", type(payload).__name__)
            return WorkerResult.empty(file_path)
        return WorkerResult.from_dict(payload, file_path)
