"""
filetypes.py — Text/binary classification and file-type detection.

A file is text when the first `sample_size` bytes decode to mostly
printable characters (ratio >= `printable_ratio_threshold`). Known binary
magic signatures short-circuit to binary. The detected type ("interpreter")
comes from, in order: extension overrides, known dotfiles, a shebang line.

Defaults can be overridden with a TOML file using the sections
[file_type_multipliers], [mime_overrides], [known_dotfiles],
[binary_signatures] and [text_detection].
"""

from __future__ import annotations
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional
import tomllib


DEFAULT_SAMPLE_SIZE = 512
DEFAULT_PRINTABLE_RATIO = 0.7

_DEFAULT_MULTIPLIERS: dict[str, float] = {
    # Documentation
    "markdown": 1.5, "rst": 1.5, "asciidoc": 1.5, "text": 1.3,
    # Programming languages
    "python3": 1.4, "typescript-react": 1.3, "typescript": 1.2,
    "javascript": 1.2, "javascript-react": 1.2, "rust": 1.2, "go": 1.2,
    "java": 1.2, "kotlin": 1.2, "scala": 1.2, "swift": 1.2, "cpp": 1.2,
    "c": 1.2, "csharp": 1.2, "fsharp": 1.2, "ruby": 1.2, "perl": 1.2,
    "php": 1.2, "lua": 1.2, "r": 1.2, "node": 1.2, "deno": 1.2,
    # Shell and scripting
    "bash": 1.2, "zsh": 1.2, "fish": 1.2, "sh": 1.2, "ksh": 1.2,
    "dash": 1.2, "tcl": 1.2, "awk": 1.1, "sed": 1.1,
    # Web
    "html": 1.1, "css": 1.1, "scss": 1.1, "less": 1.1, "vue": 1.2,
    "svelte": 1.2,
    # Configuration and data
    "json": 1.3, "yaml": 1.3, "toml": 1.3, "ini": 1.2, "config": 1.2,
    "xml": 1.2, "sql": 1.3,
}

_DEFAULT_OVERRIDES: dict[str, str] = {
    "tsx": "typescript-react", "jsx": "javascript-react",
    "ts": "typescript", "js": "javascript", "mjs": "javascript",
    "cjs": "javascript", "vue": "vue", "svelte": "svelte",
    "html": "html", "htm": "html", "css": "css", "scss": "scss",
    "sass": "scss", "less": "less",
    "rs": "rust", "py": "python3", "rb": "ruby", "php": "php", "go": "go",
    "java": "java", "scala": "scala", "kt": "kotlin", "swift": "swift",
    "c": "c", "cpp": "cpp", "h": "c", "hpp": "cpp", "cs": "csharp",
    "fs": "fsharp", "pl": "perl", "pm": "perl", "r": "r", "lua": "lua",
    "sh": "bash", "bash": "bash", "zsh": "zsh", "fish": "fish",
    "ksh": "ksh", "dash": "dash", "tcl": "tcl", "awk": "awk", "sed": "sed",
    "json": "json", "yaml": "yaml", "yml": "yaml", "toml": "toml",
    "ini": "ini", "xml": "xml", "sql": "sql",
    "md": "markdown", "mdx": "markdown", "rst": "rst", "adoc": "asciidoc",
    "txt": "text",
}

_DEFAULT_DOTFILES: tuple[str, ...] = (
    ".gitignore", ".env", ".npmrc", ".yarnrc",
    ".bashrc", ".zshrc", ".vimrc", ".editorconfig",
)

_DEFAULT_SIGNATURES: dict[str, bytes] = {
    "elf": bytes([0x7F, 0x45, 0x4C, 0x46]),
    "dos_mz": bytes([0x4D, 0x5A]),
    "macho_32": bytes([0xFE, 0xED, 0xFA, 0xCE]),
    "macho_64": bytes([0xFE, 0xED, 0xFA, 0xCF]),
    "macho_universal": bytes([0xCA, 0xFE, 0xBA, 0xBE]),
    "coff": bytes([0x7F, 0x43, 0x4F, 0x46]),
}

_WHITESPACE = frozenset("\t\n\r\f\v")
_REPLACEMENT_CHAR = "\ufffd"


class FileTypesError(Exception):
    pass


@dataclass
class FileInfo:
    size: int
    is_text: bool
    interpreter: Optional[str] = None


@dataclass
class FileTypes:
    multipliers: dict[str, float] = field(default_factory=lambda: dict(_DEFAULT_MULTIPLIERS))
    overrides: dict[str, str] = field(default_factory=lambda: dict(_DEFAULT_OVERRIDES))
    dotfiles: tuple[str, ...] = _DEFAULT_DOTFILES
    signatures: dict[str, bytes] = field(default_factory=lambda: dict(_DEFAULT_SIGNATURES))
    sample_size: int = DEFAULT_SAMPLE_SIZE
    printable_ratio: float = DEFAULT_PRINTABLE_RATIO

    @classmethod
    def from_toml(cls, path: Path) -> "FileTypes":
        """Load a TOML table and merge it over the built-in defaults."""
        try:
            raw = tomllib.loads(path.read_text(encoding="utf-8"))
        except (OSError, tomllib.TOMLDecodeError) as e:
            raise FileTypesError(f"Cannot load file types from {path}: {e}") from e

        types = cls()
        try:
            for name, value in raw.get("file_type_multipliers", {}).items():
                types.multipliers[str(name)] = float(value)
            for ext, name in raw.get("mime_overrides", {}).items():
                types.overrides[str(ext).lower()] = str(name)
            patterns = raw.get("known_dotfiles", {}).get("patterns")
            if patterns is not None:
                types.dotfiles = tuple(str(p) for p in patterns)
            for name, sig in raw.get("binary_signatures", {}).items():
                types.signatures[str(name)] = bytes(sig)
            detection = raw.get("text_detection", {})
            types.sample_size = int(detection.get("sample_size", types.sample_size))
            types.printable_ratio = float(
                detection.get("printable_ratio_threshold", types.printable_ratio)
            )
        except (TypeError, ValueError) as e:
            raise FileTypesError(f"Invalid file type table in {path}: {e}") from e

        if types.sample_size <= 0 or not 0.0 <= types.printable_ratio <= 1.0:
            raise FileTypesError(
                f"Invalid text_detection settings in {path}: "
                f"sample_size={types.sample_size}, ratio={types.printable_ratio}"
            )
        return types

    # -----------------------------------------------------------------------
    # Classification
    # -----------------------------------------------------------------------

    def has_binary_signature(self, sample: bytes) -> bool:
        return any(sig and sample.startswith(sig) for sig in self.signatures.values())

    def printable_ratio_of(self, sample: bytes) -> float:
        if not sample:
            return 1.0
        text = sample.decode("utf-8", errors="replace")
        # Bytes that are not valid UTF-8 decode to U+FFFD and count against the ratio.
        printable = sum(
            1 for ch in text
            if ch != _REPLACEMENT_CHAR and (ch.isprintable() or ch in _WHITESPACE)
        )
        return printable / len(text)

    def is_text(self, sample: bytes) -> bool:
        sample = sample[: self.sample_size]
        if not sample:
            return True
        if self.has_binary_signature(sample):
            return False
        return self.printable_ratio_of(sample) >= self.printable_ratio

    def interpreter_for(self, path: Path, sample: bytes = b"") -> Optional[str]:
        ext = path.suffix.lower().lstrip(".")
        if ext and ext in self.overrides:
            return self.overrides[ext]
        if path.name in self.dotfiles:
            return "config"
        return _shebang_interpreter(sample)

    def multiplier_for(self, interpreter: Optional[str]) -> float:
        if interpreter is None:
            return 1.0
        return self.multipliers.get(interpreter, 1.0)

    def inspect(self, path: Path, size: int, head: bytes) -> FileInfo:
        """Classify a file from its size and leading bytes."""
        text = self.is_text(head)
        interpreter = self.interpreter_for(path, head) if text else None
        return FileInfo(size=size, is_text=text, interpreter=interpreter)


def _shebang_interpreter(sample: bytes) -> Optional[str]:
    if not sample.startswith(b"#!"):
        return None
    first_line = sample.split(b"\n", 1)[0][2:].decode("utf-8", errors="replace").strip()
    parts = first_line.split()
    if not parts:
        return None
    program = parts[0].rsplit("/", 1)[-1]
    if program == "env":
        args = [p for p in parts[1:] if not p.startswith("-")]
        if not args:
            return None
        program = args[0].rsplit("/", 1)[-1]
    return program or None
