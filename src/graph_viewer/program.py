"""
Program loader.

Parses a C translation unit with libclang and exposes the pieces the analyses
need: defined functions (in source order), declared-only (external)
functions, and global variables. A ``Program`` is read-only once loaded.
"""

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, FrozenSet, Iterator, List, Optional, Sequence, Tuple

import clang.cindex as clang

from .errors import LoadError

logger = logging.getLogger(__name__)

MEM2REG = "-mem2reg"
BASICAA = "-basicaa"
SUPPORTED_OPTIONS = frozenset({MEM2REG, BASICAA})

DEFAULT_CLANG_FLAGS = ['-std=c11']


class CompilationDatabase:
    """Handle compilation database (compile_commands.json)."""

    def __init__(self, source_dir: Path):
        self.source_dir = source_dir
        self.commands: Dict[str, List[str]] = {}
        self._load()

    def _load(self):
        """Load compile_commands.json if it exists."""
        compile_db_path = self.source_dir / 'compile_commands.json'
        if not compile_db_path.exists():
            return

        try:
            with open(compile_db_path) as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            raise LoadError(f"Cannot read {compile_db_path}: {e}") from e

        for entry in data:
            try:
                filename = Path(entry['file']).name
            except (KeyError, TypeError):
                continue

            # Handle both 'command' (string) and 'arguments' (array) formats
            if 'command' in entry:
                flags = self._extract_flags(entry['command'].split())
            elif 'arguments' in entry:
                flags = self._extract_flags(entry['arguments'])
            else:
                continue
            self.commands[filename] = flags

        logger.debug("Loaded compilation info for %d files from %s", len(self.commands), compile_db_path)

    def _extract_flags(self, parts: Sequence[str]) -> List[str]:
        """Keep the compiler flags, dropping the driver, sources and outputs."""
        flags = []

        i = 0
        while i < len(parts):
            part = parts[i]

            if i == 0 or part in ['gcc', 'clang', 'cc'] or part.endswith('/gcc') or part.endswith('/clang'):
                i += 1
                continue

            if part == '-o':
                i += 2
                continue

            if part.endswith('.c') or part.endswith('.o') or part == '-c':
                i += 1
                continue

            if part.startswith('-'):
                flags.append(part)
                if part in ['-I', '-D', '-isystem', '-include']:
                    if i + 1 < len(parts) and not parts[i + 1].startswith('-'):
                        i += 1
                        flags.append(parts[i])

            i += 1

        return flags

    def get_flags_for_file(self, filename: str) -> Optional[List[str]]:
        """Get compilation flags for a specific file."""
        return self.commands.get(filename)


@dataclass(frozen=True, eq=False)
class Function:
    """A function known to the program, defined or only declared."""
    name: str
    cursor: clang.Cursor
    is_defined: bool
    type_spelling: str
    parameters: Tuple[str, ...]
    is_variadic: bool
    line: int

    def body(self) -> Optional[clang.Cursor]:
        """The function's compound statement, or None for a declaration."""
        if not self.is_defined:
            return None
        for child in self.cursor.get_children():
            if child.kind == clang.CursorKind.COMPOUND_STMT:
                return child
        return None


class Program:
    """A loaded translation unit; treat as read-only."""

    def __init__(self, path: Path, translation_unit: clang.TranslationUnit,
                 options: FrozenSet[str]):
        self.path = path
        self.translation_unit = translation_unit
        self.options = options
        self._functions: Dict[str, Function] = {}
        self._globals: Dict[str, clang.Cursor] = {}
        self._collect()

    def _collect(self):
        main_file = str(self.path)
        for node in self.translation_unit.cursor.get_children():
            if node.kind == clang.CursorKind.FUNCTION_DECL:
                self._add_function(node, main_file)
            elif node.kind == clang.CursorKind.VAR_DECL:
                self._globals.setdefault(node.spelling, node)

    def _add_function(self, node: clang.Cursor, main_file: str):
        defined = node.is_definition() and _in_file(node, main_file)
        existing = self._functions.get(node.spelling)
        if existing is not None and (existing.is_defined or not defined):
            return

        ftype = node.type.get_canonical()
        variadic = ftype.kind == clang.TypeKind.FUNCTIONPROTO and ftype.is_function_variadic()
        self._functions[node.spelling] = Function(
            name=node.spelling,
            cursor=node,
            is_defined=defined,
            type_spelling=ftype.spelling,
            parameters=tuple(arg.spelling for arg in node.get_arguments()),
            is_variadic=variadic,
            line=node.location.line,
        )

    @property
    def promotes_registers(self) -> bool:
        return MEM2REG in self.options

    @property
    def basic_alias_analysis(self) -> bool:
        return BASICAA in self.options

    def defined_functions(self) -> List[Function]:
        """Functions with a body in the input file, in source order."""
        funcs = [f for f in self._functions.values() if f.is_defined]
        return sorted(funcs, key=lambda f: f.line)

    def external_functions(self) -> List[Function]:
        return [f for f in self._functions.values() if not f.is_defined]

    def functions(self) -> Iterator[Function]:
        return iter(self._functions.values())

    def function(self, name: str) -> Optional[Function]:
        return self._functions.get(name)

    def is_global(self, name: str) -> bool:
        return name in self._globals


def _in_file(node: clang.Cursor, filename: str) -> bool:
    location = node.location
    return location.file is not None and Path(location.file.name) == Path(filename)


def _configure_libclang(libclang_path: Optional[str]):
    if libclang_path and not clang.Config.loaded:
        clang.Config.set_library_file(libclang_path)


def load_program(path: Path, options: Sequence[str] = (MEM2REG, BASICAA),
                 clang_args: Optional[Sequence[str]] = None,
                 libclang_path: Optional[str] = None) -> Program:
    """
    Parse ``path`` into a ``Program``.

    ``options`` are the preprocessing options the analyses honour; unknown
    options are rejected. Compiler flags come from a ``compile_commands.json``
    next to the input when there is one.
    """
    path = Path(path).resolve()
    if not path.is_file():
        raise LoadError(f"Input file not found: {path}")

    unknown = [opt for opt in options if opt not in SUPPORTED_OPTIONS]
    if unknown:
        raise LoadError(f"Unsupported preprocessing option(s): {', '.join(unknown)}")

    comp_db = CompilationDatabase(path.parent)
    flags = comp_db.get_flags_for_file(path.name)
    if flags is None:
        flags = DEFAULT_CLANG_FLAGS + [f'-I{path.parent}']
    flags = list(flags) + list(clang_args or [])

    try:
        _configure_libclang(libclang_path)
        index = clang.Index.create()
        tu = index.parse(str(path), args=flags)
    except clang.TranslationUnitLoadError as e:
        raise LoadError(f"libclang could not parse {path}: {e}") from e
    except clang.LibclangError as e:
        raise LoadError(f"libclang is not available: {e}") from e

    errors = [d for d in tu.diagnostics if d.severity >= clang.Diagnostic.Error]
    if errors:
        details = "; ".join(f"{d.location.line}: {d.spelling}" for d in errors[:5])
        raise LoadError(f"{path.name} has {len(errors)} error(s): {details}")

    program = Program(path, tu, frozenset(options))
    logger.info("Loaded %s: %d defined function(s)", path.name, len(program.defined_functions()))
    return program
