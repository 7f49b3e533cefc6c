# log4shell_scanner/parser.py
import re
import logging
from typing import Optional
from packaging.version import Version
from .models import ReleaseVersion

logger = logging.getLogger(__name__)

LOG4J_GROUP_ID = "org.apache.logging.log4j"
LOG4J_CORE_ARTIFACT_ID = "log4j-core"
# Last log4j-core 2.x release shipping the unrestricted JNDI lookup
LAST_VULNERABLE_VERSION = Version("2.14.1")

DIGITS_PATTERN = re.compile(r'[0-9]+')
LEADING_DIGITS_PATTERN = re.compile(r'^[0-9]+')

_ESCAPES = {'t': '\t', 'n': '\n', 'r': '\r', 'f': '\f'}


def _logical_lines(text: str):
    """Yields logical lines of a .properties document, joining backslash continuations."""
    pending = None
    for raw_line in text.splitlines():
        line = raw_line.lstrip(' \t\f')
        if pending is None:
            if not line or line[0] in '#!':
                continue
        else:
            line = pending + line
        trailing = len(line) - len(line.rstrip('\\'))
        if trailing % 2 == 1:
            pending = line[:-1]
            continue
        pending = None
        yield line
    if pending is not None:
        yield pending


def _unescape(value: str) -> str:
    out = []
    i = 0
    while i < len(value):
        ch = value[i]
        if ch != '\\' or i + 1 >= len(value):
            out.append(ch)
            i += 1
            continue
        nxt = value[i + 1]
        if nxt == 'u' and i + 6 <= len(value):
            try:
                out.append(chr(int(value[i + 2:i + 6], 16)))
                i += 6
                continue
            except ValueError:
                pass # Malformed \u escape, keep the literal 'u'
        out.append(_ESCAPES.get(nxt, nxt))
        i += 2
    return ''.join(out)


def _split_key_value(line: str) -> tuple[str, str]:
    i = 0
    while i < len(line):
        ch = line[i]
        if ch == '\\':
            i += 2
            continue
        if ch in '=: \t\f':
            break
        i += 1
    key = line[:i]
    rest = line[i:].lstrip(' \t\f')
    # Whitespace may be followed by one explicit separator
    if rest and rest[0] in '=:' and (i >= len(line) or line[i] in ' \t\f'):
        rest = rest[1:].lstrip(' \t\f')
    elif i < len(line) and line[i] in '=:':
        rest = line[i + 1:].lstrip(' \t\f')
    return _unescape(key), _unescape(rest)


def parse_properties(data: bytes) -> dict[str, str]:
    """
    Parses the bytes of a Java .properties file (ISO-8859-1, like Properties.load).
    Later keys override earlier ones.
    """
    text = data.decode('latin-1')
    properties = {}
    for line in _logical_lines(text):
        key, value = _split_key_value(line)
        properties[key] = value
    return properties


def parse_release_version(version_str: Optional[str]) -> Optional[ReleaseVersion]:
    """
    Parses 'M.N' or 'M.N.P' into a ReleaseVersion. Returns None when the major or
    minor component is missing or not numeric. A two-component version implies patch 0.
    """
    if not version_str:
        return None
    version_str = version_str.strip()
    tokens = version_str.split('.')
    if len(tokens) < 2:
        return None
    if not DIGITS_PATTERN.fullmatch(tokens[0]) or not DIGITS_PATTERN.fullmatch(tokens[1]):
        return None
    patch = 0
    if len(tokens) > 2:
        match = LEADING_DIGITS_PATTERN.match(tokens[2])
        if not match:
            return None
        patch = int(match.group(0))
    return ReleaseVersion(major=int(tokens[0]), minor=int(tokens[1]), patch=patch, raw=version_str)


def classify(group_id: Optional[str], artifact_id: Optional[str], version: Optional[str]) -> Optional[ReleaseVersion]:
    """Returns the parsed version only for org.apache.logging.log4j:log4j-core."""
    if group_id != LOG4J_GROUP_ID or artifact_id != LOG4J_CORE_ARTIFACT_ID:
        return None
    return parse_release_version(version)


def is_vulnerable(major: int, minor: int, patch: int) -> bool:
    """2.0.0 up to and including 2.14.1 are vulnerable; other majors never are."""
    if major != 2:
        return False
    return Version(f"{major}.{minor}.{patch}") <= LAST_VULNERABLE_VERSION


def load_vulnerable_version(properties_bytes: bytes, source_hint: str = "input") -> Optional[ReleaseVersion]:
    """
    Parses pom.properties content and returns the release only if it is a vulnerable
    log4j-core. Missing keys or an unparseable version degrade to None.
    """
    props = parse_properties(properties_bytes)
    group_id = props.get('groupId')
    artifact_id = props.get('artifactId')
    version_str = props.get('version')

    if group_id is None or artifact_id is None or version_str is None:
        logger.warning(f"pom.properties in {source_hint} is missing groupId/artifactId/version, cannot classify")
        return None

    release = classify(group_id, artifact_id, version_str)
    if release is None:
        if group_id == LOG4J_GROUP_ID and artifact_id == LOG4J_CORE_ARTIFACT_ID:
            logger.warning(f"Unparseable log4j-core version '{version_str}' in {source_hint}, cannot classify")
        return None

    if is_vulnerable(release.major, release.minor, release.patch):
        logger.debug(f"Vulnerable log4j-core {release} declared in {source_hint}")
        return release
    logger.debug(f"log4j-core {release} in {source_hint} is not vulnerable")
    return None
