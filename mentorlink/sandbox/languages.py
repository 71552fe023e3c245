"""
Language toolchains for the execution sandbox.

Each entry describes how to name the source file and which commands to
run inside the working directory. Keys are lower-cased language names.
"""
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, List, Optional


JAVA_CLASS_PATTERN = re.compile(r"public\s+class\s+(\w+)")
JAVA_FALLBACK_CLASS = "Main"


def extract_java_class_name(code: str) -> Optional[str]:
    """Name of the first `public class` declared in the source, if any."""
    match = JAVA_CLASS_PATTERN.search(code)
    return match.group(1) if match else None


def _default_stem(code: str) -> str:
    return "code"


def _java_stem(code: str) -> str:
    return extract_java_class_name(code) or JAVA_FALLBACK_CLASS


@dataclass(frozen=True)
class Toolchain:
    """How one language is written to disk and executed."""
    name: str
    extension: str
    commands: Callable[[Path, Path], List[List[str]]]
    stem: Callable[[str], str] = _default_stem

    def source_path(self, workdir: Path, code: str) -> Path:
        return workdir / f"{self.stem(code)}{self.extension}"


def build_toolchains(python_bin: str) -> Dict[str, Toolchain]:
    """
    Dispatch table of supported languages.

    Args:
        python_bin: Interpreter used for python snippets
    Returns:
        Mapping of lower-cased language name -> Toolchain
    """
    csharp = Toolchain(
        name="csharp",
        extension=".cs",
        commands=lambda source, workdir: [["dotnet", "script", str(source)]],
    )
    return {
        "javascript": Toolchain(
            name="javascript",
            extension=".js",
            commands=lambda source, workdir: [["node", str(source)]],
        ),
        "typescript": Toolchain(
            name="typescript",
            extension=".ts",
            commands=lambda source, workdir: [["npx", "ts-node", str(source)]],
        ),
        "python": Toolchain(
            name="python",
            extension=".py",
            commands=lambda source, workdir: [[python_bin, str(source)]],
        ),
        "java": Toolchain(
            name="java",
            extension=".java",
            stem=_java_stem,
            commands=lambda source, workdir: [
                ["javac", str(source)],
                ["java", "-cp", str(workdir), source.stem],
            ],
        ),
        "csharp": csharp,
        "c#": csharp,
        "go": Toolchain(
            name="go",
            extension=".go",
            commands=lambda source, workdir: [["go", "run", str(source)]],
        ),
    }
