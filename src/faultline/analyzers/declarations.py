"""Lexical declaration patterns shared across the analysis pipeline.

Nothing here parses a language properly. Each pattern recognises one line that
looks like a declaration, route registration, configuration key or
environment variable reference, and lines that match nothing are ignored.
"""

import re
from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import List, Optional, Sequence, Tuple

# Declaration families
FUNCTION = "function"
TYPE = "type"
FIELD = "field"
ROUTE = "route"
CONFIG_KEY = "config_key"
ENV_VAR = "env_var"
CONSTANT = "constant"

# Families that reference something defined elsewhere rather than declaring it
REFERENCE_FAMILIES = frozenset({ROUTE, ENV_VAR})

LANGUAGE_MAP = {
    'py': 'python',
    'pyi': 'python',
    'js': 'javascript',
    'jsx': 'javascript',
    'mjs': 'javascript',
    'cjs': 'javascript',
    'ts': 'typescript',
    'tsx': 'typescript',
    'go': 'go',
    'rs': 'rust',
    'java': 'jvm',
    'kt': 'jvm',
    'kts': 'jvm',
    'scala': 'jvm',
    'cs': 'jvm',
    'json': 'config',
    'yaml': 'config',
    'yml': 'config',
    'toml': 'config',
    'ini': 'config',
    'cfg': 'config',
    'properties': 'config',
    'env': 'config',
}

CONTROL_KEYWORDS = frozenset({
    'if', 'for', 'while', 'switch', 'catch', 'return', 'function', 'else',
    'elif', 'with', 'new', 'typeof', 'await', 'super', 'this', 'do', 'try',
})

ACCESS_MODIFIERS = ('public', 'private', 'protected', 'internal', 'fileprivate')

# Best-effort: a line starting with a comment leader in any supported language
COMMENT_LEADER = re.compile(r"^\s*(#|//|/\*|\*|--|;)")


@dataclass(frozen=True)
class Declaration:
    """A declaration-like construct recognised on one line."""
    name: str
    family: str
    text: str
    indent: int
    modifiers: Tuple[str, ...] = ()
    signature: Optional[str] = None
    type_annotation: Optional[str] = None
    value: Optional[str] = None
    search_term: Optional[str] = None
    is_container: bool = False  # class/struct/interface body that can hold fields

    @property
    def term(self) -> str:
        """The token searched for when looking for usages."""
        return self.search_term or self.name


def language_for(path: str) -> str:
    """Detect a coarse language family from the file name."""
    name = PurePosixPath(path).name.lower()
    if name == '.env' or name.startswith('.env.'):
        return 'config'
    ext = name.rsplit('.', 1)[-1] if '.' in name else ''
    return LANGUAGE_MAP.get(ext, 'unknown')


def identifier_tokens(name: str) -> List[str]:
    """Split an identifier into lower-case words (camelCase and snake_case aware)."""
    spaced = re.sub(r'([a-z0-9])([A-Z])', r'\1 \2', name)
    spaced = re.sub(r'([A-Z]+)([A-Z][a-z])', r'\1 \2', spaced)
    return [token.lower() for token in re.split(r'[^A-Za-z0-9]+', spaced) if token]


def token_overlap(a: str, b: str) -> float:
    """Shared-token ratio between two identifiers, relative to the longer one."""
    tokens_a, tokens_b = set(identifier_tokens(a)), set(identifier_tokens(b))
    if not tokens_a or not tokens_b:
        return 0.0
    return len(tokens_a & tokens_b) / max(len(tokens_a), len(tokens_b))


def indent_of(line: str) -> int:
    expanded = line.expandtabs(4)
    return len(expanded) - len(expanded.lstrip())


def normalize(text: Optional[str]) -> Optional[str]:
    """Collapse whitespace and trailing punctuation so formatting changes compare equal."""
    if text is None:
        return None
    collapsed = re.sub(r'\s+', ' ', text).strip()
    collapsed = re.sub(r'\s*([,(){}\[\]<>:|=])\s*', r'\1', collapsed)
    return collapsed.rstrip(',;{').strip() or None


def split_parameters(rest: str) -> Tuple[str, str]:
    """Split text following an opening parenthesis into (params, remainder).

    Parameters spanning several lines are returned as far as they go; the
    remainder is then empty.
    """
    depth = 1
    for pos, char in enumerate(rest):
        if char in '([{<':
            depth += 1
        elif char in ')]}>':
            if char == '>' and pos > 0 and rest[pos - 1] in '=-':
                continue
            depth -= 1
            if depth == 0:
                return rest[:pos], rest[pos + 1:]
    return rest, ''


# --- code declarations -------------------------------------------------------

PY_DEF = re.compile(r'^(?:async\s+)?def\s+(?P<name>\w+)\s*\(')
PY_CLASS = re.compile(r'^class\s+(?P<name>\w+)\s*(?:\((?P<bases>[^)]*)\))?\s*:')
PY_CONSTANT = re.compile(
    r'^(?P<name>[A-Z][A-Z0-9_]*)\s*(?::\s*(?P<type>[^=]+?))?\s*=\s*(?P<value>.+)$')
PY_FIELD = re.compile(
    r'^(?P<name>[A-Za-z_]\w*)\s*:\s*(?P<type>[^=#]+?)\s*(?:=\s*(?P<value>[^#]*))?(?:#.*)?$')

JS_FUNCTION = re.compile(
    r'^(?P<mods>(?:export\s+)?(?:default\s+)?(?:declare\s+)?)(?:async\s+)?'
    r'function\s*\*?\s*(?P<name>\w+)\s*(?:<[^>(]*>)?\s*\(')
JS_CONSTANT = re.compile(
    r'^(?P<mods>(?:export\s+)?)const\s+(?P<name>[A-Z][A-Z0-9_]*)\s*'
    r'(?::\s*(?P<type>[^=]+?))?\s*=\s*(?P<value>.+?);?$')
JS_ARROW = re.compile(
    r'^(?P<mods>(?:export\s+)?)(?:const|let|var)\s+(?P<name>\w+)\s*(?::[^=]+)?=\s*'
    r'(?:async\s+)?(?:function\b[^(]*\(|\(|(?P<single>\w+)\s*=>)')
JS_TYPE = re.compile(
    r'^(?P<mods>(?:export\s+)?(?:default\s+)?(?:declare\s+)?(?:abstract\s+)?)'
    r'(?P<kw>class|interface|enum|type)\s+(?P<name>\w+)(?P<rest>.*)$')
JS_METHOD = re.compile(
    r'^(?P<mods>(?:(?:public|private|protected|static|async|readonly|abstract|override|get|set)\s+)*)'
    r'(?P<name>#?\w+)\s*(?:<[^>(]*>)?\s*\(')
JS_FIELD = re.compile(
    r'^(?P<mods>(?:(?:public|private|protected|readonly|static|declare)\s+)*)'
    r'(?P<name>#?\w+)(?P<opt>\??)\s*:\s*(?P<type>[^;=]+?)\s*(?:=\s*(?P<value>[^;]+))?[;,]?\s*$')

GO_FUNC = re.compile(r'^func\s+(?:\((?P<recv>[^)]*)\)\s*)?(?P<name>\w+)\s*(?:\[[^\]]*\])?\s*\(')
GO_TYPE = re.compile(r'^type\s+(?P<name>\w+)\s+(?P<rest>.+?)\s*\{?\s*$')
GO_CONSTANT = re.compile(
    r'^(?:const|var)\s+(?P<name>\w+)\s*(?P<type>[\w.*\[\]]+)?\s*=\s*(?P<value>.+)$')
GO_FIELD = re.compile(
    r'^(?P<name>[A-Za-z_]\w*)\s+(?P<type>[\w.*\[\]]+(?:\{\})?)\s*(?:`[^`]*`)?\s*(?://.*)?$')

RS_FN = re.compile(
    r'^(?P<mods>(?:pub(?:\([^)]*\))?\s+)?)(?:const\s+)?(?:async\s+)?(?:unsafe\s+)?'
    r'(?:extern\s+"[^"]*"\s+)?fn\s+(?P<name>\w+)\s*(?:<[^>(]*>)?\s*\(')
RS_TYPE = re.compile(
    r'^(?P<mods>(?:pub(?:\([^)]*\))?\s+)?)(?P<kw>struct|enum|trait|type|union)\s+(?P<name>\w+)(?P<rest>.*)$')
RS_CONSTANT = re.compile(
    r'^(?P<mods>(?:pub(?:\([^)]*\))?\s+)?)(?:const|static)\s+(?P<name>[A-Z][A-Z0-9_]*)\s*:'
    r'\s*(?P<type>[^=]+?)\s*=\s*(?P<value>.+?);?$')
RS_FIELD = re.compile(r'^(?P<mods>(?:pub(?:\([^)]*\))?\s+)?)(?P<name>\w+)\s*:\s*(?P<type>[^,]+?),?\s*$')

JVM_MODIFIER = r'(?:public|private|protected|internal|static|final|abstract|synchronized|override|virtual|async|open|suspend|inline|sealed|partial|readonly)'
JVM_METHOD = re.compile(
    r'^(?P<mods>(?:' + JVM_MODIFIER + r'\s+)+)(?:<[^>]+>\s+)?(?P<ret>[\w\[\]<>,.?]+)\s+(?P<name>\w+)\s*\(')
JVM_FUN = re.compile(
    r'^(?P<mods>(?:' + JVM_MODIFIER + r'\s+)*)fun\s+(?:<[^>]*>\s*)?(?:\w+\.)?(?P<name>\w+)\s*\(')
JVM_TYPE = re.compile(
    r'^(?P<mods>(?:' + JVM_MODIFIER + r'\s+)*)(?:data\s+)?(?P<kw>class|interface|enum|record|struct|object)\s+(?P<name>\w+)(?P<rest>.*)$')
JVM_FIELD = re.compile(
    r'^(?P<mods>(?:(?:public|private|protected|internal|static|final|readonly)\s+)+)'
    r'(?P<type>[\w<>\[\],.?]+)\s+(?P<name>\w+)\s*(?:=\s*(?P<value>[^;]+))?;\s*$')

# --- routes, env vars, config keys --------------------------------------------

ROUTE_PATTERNS = [
    re.compile(r'@(?:\w+\.)*(?P<method>get|post|put|patch|delete|head|options|route|api_route|websocket)'
               r'\(\s*[\'"](?P<path>[^\'"]*)[\'"]'),
    re.compile(r'\b(?:app|router|server|api|routes)\.(?P<method>get|post|put|patch|delete|all)'
               r'\(\s*[\'"`](?P<path>/[^\'"`]*)[\'"`]'),
    re.compile(r'@(?P<method>Get|Post|Put|Patch|Delete|Request)Mapping\(\s*(?:(?:value|path)\s*=\s*)?'
               r'"(?P<path>[^"]*)"'),
    re.compile(r'\.(?P<method>GET|POST|PUT|PATCH|DELETE)\(\s*"(?P<path>/[^"]*)"'),
    re.compile(r'\b(?P<method>HandleFunc|Handle)\(\s*"(?P<path>/[^"]*)"'),
    re.compile(r'\b(?:re_)?(?P<method>path)\(\s*r?[\'"](?P<path>[^\'"]+)[\'"]\s*,'),
]

ENV_PATTERNS = [
    re.compile(r'os\.environ\[\s*[\'"](?P<name>\w+)[\'"]\s*\]'),
    re.compile(r'os\.environ\.get\(\s*[\'"](?P<name>\w+)[\'"]'),
    re.compile(r'os\.getenv\(\s*[\'"](?P<name>\w+)[\'"]'),
    re.compile(r'process\.env\.(?P<name>[A-Za-z_]\w*)'),
    re.compile(r'process\.env\[\s*[\'"](?P<name>\w+)[\'"]\s*\]'),
    re.compile(r'System\.getenv\(\s*"(?P<name>\w+)"'),
    re.compile(r'os\.(?:Getenv|LookupEnv)\(\s*"(?P<name>\w+)"'),
    re.compile(r'env::var\(\s*"(?P<name>\w+)"'),
    re.compile(r'\bENV\[\s*[\'"](?P<name>\w+)[\'"]\s*\]'),
]

CONFIG_JSON_KEY = re.compile(r'^"(?P<name>[^"]+)"\s*:\s*(?P<value>.*?),?$')
CONFIG_YAML_KEY = re.compile(r'^(?P<name>[A-Za-z_][\w.\-]*)\s*:(?:\s+(?P<value>.*))?$')
CONFIG_ASSIGN_KEY = re.compile(r'^(?P<name>[A-Za-z_][\w.\-]*)\s*[=:]\s*(?P<value>.*)$')
CONFIG_ENV_KEY = re.compile(r'^(?:export\s+)?(?P<name>[A-Z_][A-Z0-9_]*)=(?P<value>.*)$')


def _modifiers(text: str) -> Tuple[str, ...]:
    return tuple(text.split()) if text else ()


def _function(name: str, stripped: str, indent: int, mods: Tuple[str, ...],
              paren_at: int, return_marker: str) -> Declaration:
    params, remainder = split_parameters(stripped[paren_at + 1:])
    annotation = None
    remainder = remainder.strip()
    if return_marker and remainder.startswith(return_marker):
        annotation = re.split(r'\s*(?:\{|\bwhere\b|=>)', remainder[len(return_marker):], maxsplit=1)[0]
        annotation = annotation.rstrip(':').strip() or None
    elif return_marker == '' and remainder:
        annotation = remainder.rstrip('{').strip() or None
    return Declaration(
        name=name, family=FUNCTION, text=stripped, indent=indent, modifiers=mods,
        signature=normalize(params) or '', type_annotation=normalize(annotation),
    )


def _python(stripped: str, indent: int) -> Optional[Declaration]:
    match = PY_DEF.match(stripped)
    if match:
        return _function(match.group('name'), stripped, indent, (), match.end() - 1, '->')
    match = PY_CLASS.match(stripped)
    if match:
        return Declaration(match.group('name'), TYPE, stripped, indent,
                           type_annotation=normalize(match.group('bases')), is_container=True)
    if indent == 0:
        match = PY_CONSTANT.match(stripped)
        if match:
            return Declaration(match.group('name'), CONSTANT, stripped, indent,
                               type_annotation=normalize(match.group('type')),
                               value=normalize(match.group('value')))
    return None


def _javascript(stripped: str, indent: int) -> Optional[Declaration]:
    match = JS_FUNCTION.match(stripped)
    if match:
        return _function(match.group('name'), stripped, indent, _modifiers(match.group('mods')),
                         match.end() - 1, ':')
    match = JS_CONSTANT.match(stripped)
    if match and '=>' not in stripped:
        return Declaration(match.group('name'), CONSTANT, stripped, indent,
                           modifiers=_modifiers(match.group('mods')),
                           type_annotation=normalize(match.group('type')),
                           value=normalize(match.group('value')))
    match = JS_ARROW.match(stripped)
    if match and ('=>' in stripped or 'function' in stripped):
        mods = _modifiers(match.group('mods'))
        if match.group('single'):
            return Declaration(match.group('name'), FUNCTION, stripped, indent, modifiers=mods,
                               signature=match.group('single'))
        return _function(match.group('name'), stripped, indent, mods, match.end() - 1, ':')
    match = JS_TYPE.match(stripped)
    if match:
        kw, rest = match.group('kw'), match.group('rest')
        if kw == 'type':
            annotation = rest.split('=', 1)[1] if '=' in rest else rest
        else:
            annotation = rest.rstrip('{')
        return Declaration(match.group('name'), TYPE, stripped, indent,
                           modifiers=_modifiers(match.group('mods')),
                           type_annotation=normalize(annotation.rstrip(';')),
                           is_container=kw in ('class', 'interface', 'enum'))
    if indent > 0:
        match = JS_METHOD.match(stripped)
        if match and match.group('name') not in CONTROL_KEYWORDS and stripped.rstrip().endswith('{'):
            return _function(match.group('name'), stripped, indent, _modifiers(match.group('mods')),
                             match.end() - 1, ':')
    return None


def _go(stripped: str, indent: int) -> Optional[Declaration]:
    match = GO_FUNC.match(stripped)
    if match:
        return _function(match.group('name'), stripped, indent, (), match.end() - 1, '')
    match = GO_TYPE.match(stripped)
    if match:
        rest = match.group('rest')
        return Declaration(match.group('name'), TYPE, stripped, indent,
                           type_annotation=normalize(rest),
                           is_container=rest.startswith(('struct', 'interface')))
    match = GO_CONSTANT.match(stripped)
    if match:
        return Declaration(match.group('name'), CONSTANT, stripped, indent,
                           type_annotation=normalize(match.group('type')),
                           value=normalize(match.group('value')))
    return None


def _rust(stripped: str, indent: int) -> Optional[Declaration]:
    match = RS_FN.match(stripped)
    if match:
        return _function(match.group('name'), stripped, indent, _modifiers(match.group('mods')),
                         match.end() - 1, '->')
    match = RS_CONSTANT.match(stripped)
    if match:
        return Declaration(match.group('name'), CONSTANT, stripped, indent,
                           modifiers=_modifiers(match.group('mods')),
                           type_annotation=normalize(match.group('type')),
                           value=normalize(match.group('value')))
    match = RS_TYPE.match(stripped)
    if match:
        kw = match.group('kw')
        return Declaration(match.group('name'), TYPE, stripped, indent,
                           modifiers=_modifiers(match.group('mods')),
                           type_annotation=normalize(match.group('rest').rstrip('{;')),
                           is_container=kw in ('struct', 'enum', 'trait', 'union'))
    return None


def _jvm(stripped: str, indent: int) -> Optional[Declaration]:
    match = JVM_TYPE.match(stripped)
    if match:
        return Declaration(match.group('name'), TYPE, stripped, indent,
                           modifiers=_modifiers(match.group('mods')),
                           type_annotation=normalize(match.group('rest').rstrip('{')),
                           is_container=True)
    match = JVM_FUN.match(stripped)
    if match:
        return _function(match.group('name'), stripped, indent, _modifiers(match.group('mods')),
                         match.end() - 1, ':')
    match = JVM_METHOD.match(stripped)
    if match and match.group('name') not in CONTROL_KEYWORDS:
        declaration = _function(match.group('name'), stripped, indent,
                                _modifiers(match.group('mods')), match.end() - 1, '')
        return Declaration(declaration.name, FUNCTION, stripped, indent,
                           modifiers=declaration.modifiers, signature=declaration.signature,
                           type_annotation=normalize(match.group('ret')))
    return None


_CODE_MATCHERS = {
    'python': (_python,),
    'javascript': (_javascript,),
    'typescript': (_javascript,),
    'go': (_go,),
    'rust': (_rust,),
    'jvm': (_jvm,),
    'unknown': (_python, _javascript, _go, _rust, _jvm),
}


def match_field(line: str, path: str, container: Declaration) -> Optional[Declaration]:
    """Recognise a field declaration inside the body of ``container``."""
    stripped = line.strip()
    indent = indent_of(line)
    if not stripped or indent <= container.indent:
        return None
    language = language_for(path)

    if language == 'python' or language == 'unknown':
        match = PY_FIELD.match(stripped)
        if match:
            return Declaration(match.group('name'), FIELD, stripped, indent,
                               type_annotation=normalize(match.group('type')),
                               value=normalize(match.group('value')))
    if language in ('javascript', 'typescript', 'unknown'):
        match = JS_FIELD.match(stripped)
        if match:
            signature = 'optional' if match.group('opt') else None
            return Declaration(match.group('name'), FIELD, stripped, indent,
                               modifiers=_modifiers(match.group('mods')), signature=signature,
                               type_annotation=normalize(match.group('type')),
                               value=normalize(match.group('value')))
    if language in ('go', 'unknown'):
        match = GO_FIELD.match(stripped)
        if match and match.group('name') not in ('return', 'break', 'continue'):
            return Declaration(match.group('name'), FIELD, stripped, indent,
                               type_annotation=normalize(match.group('type')))
    if language in ('rust', 'unknown'):
        match = RS_FIELD.match(stripped)
        if match:
            return Declaration(match.group('name'), FIELD, stripped, indent,
                               modifiers=_modifiers(match.group('mods')),
                               type_annotation=normalize(match.group('type')))
    if language in ('jvm', 'unknown'):
        match = JVM_FIELD.match(stripped)
        if match:
            mods = _modifiers(match.group('mods'))
            family = CONSTANT if {'static', 'final'} <= set(mods) and match.group('name').isupper() else FIELD
            return Declaration(match.group('name'), family, stripped, indent, modifiers=mods,
                               type_annotation=normalize(match.group('type')),
                               value=normalize(match.group('value')))
    return None


def match_route(line: str) -> Optional[Declaration]:
    """Recognise a route/endpoint registration."""
    stripped = line.strip()
    for pattern in ROUTE_PATTERNS:
        match = pattern.search(stripped)
        if match and match.group('path'):
            method = match.group('method').upper()
            if method in ('ROUTE', 'API_ROUTE', 'PATH', 'ALL', 'REQUEST', 'HANDLEFUNC', 'HANDLE'):
                method = 'ANY'
            path = match.group('path')
            return Declaration(f"{method} {path}", ROUTE, stripped, indent_of(line),
                               signature=method, search_term=path)
    return None


def match_env_vars(line: str) -> List[Declaration]:
    """Recognise environment variable references."""
    stripped = line.strip()
    found = []
    seen = set()
    for pattern in ENV_PATTERNS:
        for match in pattern.finditer(stripped):
            name = match.group('name')
            if name not in seen:
                seen.add(name)
                found.append(Declaration(name, ENV_VAR, stripped, indent_of(line)))
    return found


def match_config_key(line: str, path: str) -> Optional[Declaration]:
    """Recognise a key in a configuration file."""
    stripped = line.strip()
    if not stripped or stripped.startswith(('#', ';', '//', '[', '- ', '{', '}')):
        return None
    name = PurePosixPath(path).name.lower()
    if name.endswith('.json'):
        match = CONFIG_JSON_KEY.match(stripped)
    elif name.endswith(('.yaml', '.yml')):
        match = CONFIG_YAML_KEY.match(stripped)
    elif name == '.env' or name.startswith('.env.') or name.endswith('.env'):
        match = CONFIG_ENV_KEY.match(stripped)
    else:
        match = CONFIG_ASSIGN_KEY.match(stripped)
    if not match:
        return None
    return Declaration(match.group('name'), CONFIG_KEY, stripped, indent_of(line),
                       value=normalize(match.group('value')))


def match_declarations(line: str, path: str) -> List[Declaration]:
    """All declaration-like constructs on a single line of ``path``."""
    stripped = line.strip()
    if not stripped:
        return []
    language = language_for(path)
    if language == 'config':
        declaration = match_config_key(line, path)
        return [declaration] if declaration else []

    found: List[Declaration] = []
    indent = indent_of(line)
    for matcher in _CODE_MATCHERS[language]:
        declaration = matcher(stripped, indent)
        if declaration:
            found.append(declaration)
            break
    route = match_route(line)
    if route:
        found.append(route)
    found.extend(match_env_vars(line))
    return found


def find_container(preceding: Sequence[str], line: str, path: str) -> Optional[Declaration]:
    """Find the type whose body ``line`` sits in, looking back through ``preceding``.

    The nearest earlier line with a smaller indent decides: it has to be a
    container declaration, otherwise ``line`` is not a field.
    """
    indent = indent_of(line)
    for candidate in reversed(preceding):
        if not candidate.strip():
            continue
        if indent_of(candidate) < indent:
            for declaration in match_declarations(candidate, path):
                if declaration.is_container:
                    return declaration
            return None
    return None


def declares(line: str, name: str, path: str) -> bool:
    """Whether ``line`` declares ``name`` (as opposed to merely referencing it)."""
    return any(
        declaration.name == name and declaration.family not in REFERENCE_FAMILIES
        for declaration in match_declarations(line, path)
    )
