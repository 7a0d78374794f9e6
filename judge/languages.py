"""
Language registry.

Static mapping from a language identifier to the container image, the
canonical source file name and the compile/run commands used inside the
sandbox. The scratch directory is always mounted at /app.
"""

from dataclasses import dataclass, replace
from typing import Dict, List, Optional

from .errors import UnsupportedLanguage


@dataclass(frozen=True)
class LanguageSpec:
    """How to build and run one language inside its execution image."""
    name: str
    image: str
    source_file: str
    run_cmd: List[str]
    compile_cmd: Optional[List[str]] = None

    @property
    def extension(self) -> str:
        return self.source_file[self.source_file.rfind('.'):]


LANGUAGES: Dict[str, LanguageSpec] = {
    "javascript": LanguageSpec(
        "javascript", "javascript-compiler", "code.js",
        run_cmd=["node", "/app/code.js"]),
    "c": LanguageSpec(
        "c", "c-compiler", "code.c",
        compile_cmd=["gcc", "/app/code.c", "-o", "/app/code"],
        run_cmd=["./code"]),
    "cpp": LanguageSpec(
        "cpp", "cpp-compiler", "code.cpp",
        compile_cmd=["g++", "/app/code.cpp", "-o", "/app/code"],
        run_cmd=["./code"]),
    # javac requires the file name to match the public class
    "java": LanguageSpec(
        "java", "java-compiler", "Solution.java",
        compile_cmd=["javac", "/app/Solution.java"],
        run_cmd=["java", "-cp", "/app", "Solution"]),
    "python": LanguageSpec(
        "python", "python-compiler", "code.py",
        run_cmd=["python", "/app/code.py"]),
    "php": LanguageSpec(
        "php", "php-compiler", "code.php",
        run_cmd=["php", "/app/code.php"]),
    "ruby": LanguageSpec(
        "ruby", "ruby-compiler", "code.rb",
        run_cmd=["ruby", "/app/code.rb"]),
    "go": LanguageSpec(
        "go", "go-compiler", "code.go",
        run_cmd=["go", "run", "/app/code.go"]),
}


def lookup(language: Optional[str], image_overrides: Optional[Dict[str, str]] = None) -> LanguageSpec:
    """
    Resolve a language identifier.

    Args:
        language: Language identifier (e.g. "python")
        image_overrides: Optional mapping of language -> image taken from config

    Returns:
        The LanguageSpec for the language

    Raises:
        UnsupportedLanguage: If the language is not registered
    """
    spec = LANGUAGES.get(language) if language else None
    if spec is None:
        raise UnsupportedLanguage(language)
    if image_overrides and language in image_overrides:
        spec = replace(spec, image=image_overrides[language])
    return spec


def supported_languages() -> List[str]:
    return sorted(LANGUAGES)
