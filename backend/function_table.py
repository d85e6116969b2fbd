"""
Pre-scan that locates every function definition before execution starts, so
forward references and recursion resolve the same way.
"""
import re
from dataclasses import dataclass

from source_lines import SourceProgram

DEF_HEADER = re.compile(r"^def\s+(\w+)\s*\(([^)]*)\)\s*:")
C_HEADER = re.compile(
    r"^(?:(?:static|inline|extern|const|unsigned|signed|long|short)\s+)*"
    r"(?:int|void|float|double|char|long|short|bool)\b[\s*]+"
    r"(\w+)\s*\(([^)]*)\)\s*(;|\{)?$"
)
_IDENTIFIER = re.compile(r"[A-Za-z_]\w*")


@dataclass(frozen=True)
class FunctionDef:
    name: str
    params: tuple
    header_line: int
    body_start: int
    body_end: int
    body_depth: int


def build_python_functions(program: SourceProgram) -> dict:
    functions = {}
    for i, line in enumerate(program.lines):
        if line.is_blank:
            continue
        m = DEF_HEADER.match(line.text)
        if not m:
            continue
        # Defaults are accepted and ignored; missing arguments bind to None.
        params = tuple(p.split("=")[0].strip() for p in m.group(2).split(",") if p.strip())
        body_depth = program.body_depth(i)
        end = program.block_end(i + 1, body_depth)
        functions[m.group(1)] = FunctionDef(m.group(1), params, i, i + 1, end, body_depth)
    return functions


def c_param_name(declarator: str) -> str:
    names = _IDENTIFIER.findall(re.sub(r"\[[^\]]*\]", "", declarator))
    return names[-1] if names else declarator.strip()


def build_c_functions(program: SourceProgram) -> dict:
    functions = {}
    for i, line in enumerate(program.lines):
        if line.is_blank:
            continue
        m = C_HEADER.match(line.text)
        if not m or m.group(3) == ";":
            continue
        params = tuple(
            c_param_name(p) for p in m.group(2).split(",")
            if p.strip() and p.strip() != "void"
        )
        body_depth = line.depth + 1
        end = program.block_end(i + 1, body_depth)
        functions[m.group(1)] = FunctionDef(m.group(1), params, i, i + 1, end, body_depth)
    return functions
