"""tfexec.modules: Nested module discovery, checkout and manifest generation.

The entry file is scanned for blocks of the form::

    module "network" {
      source = "https://github.com/org/modules.git//vpc?ref=v1.2.0"
      ...
    }

Each remote source is cloned under ``.terraform/modules/<name>`` at its
pinned ``ref`` and recorded in ``.terraform/modules/modules.json`` so
``terraform init`` finds the modules already installed. Only the entry file
is scanned; modules declared inside the fetched modules are left to
Terraform.
"""

from __future__ import annotations

import json
import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import parse_qs, urlsplit, urlunsplit

from tfexec.errors import ConfigurationError, DuplicateModuleError, ExecutorError, NotFoundError
from tfexec.models import ModuleDescriptor, WorkingTree
from tfexec.source import SourceFetcher

__all__ = [
    "ModuleBlock",
    "ModuleResolver",
    "NormalizedSource",
    "normalize_source",
    "scan_module_blocks",
]

_HEADER = re.compile(r'^\s*module\s+"([^"]+)"\s*\{')
_SOURCE = re.compile(r'^\s*source\s*=\s*"((?:[^"\\]|\\.)*)"')
_FORCED_GETTER = re.compile(r"^[a-z0-9]+::")
_SCP_LIKE = re.compile(r"^(?:[\w.-]+@)?([\w.-]+\.[\w.-]+):(?!//)(.+)$")
_REPO_MARKER = ".git"

# ---------------------------------------------------------------------------
# Entry file scanning
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ModuleBlock:
    name: str
    source: Optional[str]
    line: int


def _strip_comments(line: str, in_block_comment: bool) -> Tuple[str, bool]:
    """Drop #, // and /* */ comments outside string literals."""
    out: List[str] = []
    in_string = False
    i = 0
    while i < len(line):
        ch = line[i]
        pair = line[i:i + 2]
        if in_block_comment:
            if pair == "*/":
                in_block_comment = False
                i += 2
            else:
                i += 1
            continue
        if in_string:
            out.append(ch)
            if ch == "\\" and i + 1 < len(line):
                out.append(line[i + 1])
                i += 2
                continue
            if ch == '"':
                in_string = False
            i += 1
            continue
        if ch == '"':
            in_string = True
        elif ch == "#" or pair == "//":
            break
        elif pair == "/*":
            in_block_comment = True
            i += 2
            continue
        out.append(ch)
        i += 1
    return "".join(out), in_block_comment


def _brace_delta(line: str) -> int:
    delta = 0
    in_string = False
    escaped = False
    for ch in line:
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
        elif ch == '"':
            in_string = True
        elif ch == "{":
            delta += 1
        elif ch == "}":
            delta -= 1
    return delta


def scan_module_blocks(text: str) -> List[ModuleBlock]:
    """Return every ``module "<name>" { ... }`` block with its top-level source."""
    blocks: List[ModuleBlock] = []
    current: Optional[Dict[str, Any]] = None
    depth = 0
    in_comment = False

    for lineno, raw in enumerate(text.splitlines(), start=1):
        line, in_comment = _strip_comments(raw, in_comment)
        if current is None:
            header = _HEADER.match(line)
            if not header:
                continue
            current = {"name": header.group(1), "source": None, "line": lineno}
            depth = 1
            line = line[header.end():]

        if depth == 1 and current["source"] is None:
            source = _SOURCE.match(line)
            if source:
                current["source"] = source.group(1)

        depth += _brace_delta(line)
        if depth <= 0:
            blocks.append(ModuleBlock(**current))
            current = None

    if current is not None:
        raise ConfigurationError(
            f"module {current['name']!r} opened on line {current['line']} is never closed"
        )
    return blocks


# ---------------------------------------------------------------------------
# Address normalization
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class NormalizedSource:
    url: str
    revision: Optional[str]
    subpath: str


def _is_local(address: str) -> bool:
    return address.startswith("./") or address.startswith("../")


def normalize_source(address: str) -> NormalizedSource:
    """Turn a module source into a clonable https URL, pinned ref and sub-path.

    ``https://example.com/org/repo.git//modules/foo?ref=v2`` becomes
    ``https://example.com/org/repo`` at ``v2`` with sub-path ``modules/foo``.
    """
    raw = _FORCED_GETTER.sub("", address.strip())
    if "://" not in raw:
        scp = _SCP_LIKE.match(raw)
        if scp:
            raw = f"https://{scp.group(1)}/{scp.group(2).lstrip('/')}"
        else:
            host, _, rest = raw.partition("/")
            if "." not in host or not rest:
                raise ConfigurationError(f"unsupported module source {address!r}")
            raw = f"https://{raw}"

    parsed = urlsplit(raw)
    netloc = parsed.netloc.rpartition("@")[2]
    if not netloc:
        raise ConfigurationError(f"module source {address!r} has no host")

    refs = parse_qs(parsed.query).get("ref")
    revision = refs[0] if refs else None

    path = parsed.path
    subpath = ""
    # The repository ends at the first literal ".git"; the rest is a sub-path.
    marker = path.find(_REPO_MARKER)
    if marker >= 0:
        subpath = "/".join(seg for seg in path[marker + len(_REPO_MARKER):].split("/") if seg)
        path = path[:marker]

    url = urlunsplit(("https", netloc, path, "", ""))
    return NormalizedSource(url=url, revision=revision, subpath=subpath)


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------


class ModuleResolver:
    def __init__(self, fetcher: SourceFetcher, logger: Optional[logging.Logger] = None) -> None:
        self._fetcher = fetcher
        self._logger = logger or logging.getLogger(__name__)

    def discover(self, tree: WorkingTree) -> List[ModuleDescriptor]:
        """Scan the entry file and build descriptors without fetching anything."""
        entry = tree.entry_file
        try:
            text = entry.read_text(encoding="utf-8")
        except FileNotFoundError as exc:
            raise NotFoundError(f"entry file {entry} does not exist") from exc
        except (OSError, UnicodeDecodeError) as exc:
            raise ConfigurationError(f"failed to read entry file {entry}: {exc}") from exc

        blocks = scan_module_blocks(text)
        if not blocks:
            raise NotFoundError(f"no module declarations found in {entry}")

        seen: Dict[str, int] = {}
        for block in blocks:
            if block.name in seen:
                raise DuplicateModuleError(
                    f"module {block.name!r} declared twice in {entry} "
                    f"(lines {seen[block.name]} and {block.line})"
                )
            seen[block.name] = block.line
            if not block.source:
                raise ConfigurationError(
                    f"module {block.name!r} on line {block.line} of {entry} has no source"
                )

        return [self._describe(tree, block.name, block.source or "") for block in blocks]

    def _describe(self, tree: WorkingTree, key: str, address: str) -> ModuleDescriptor:
        if _is_local(address):
            path = Path(os.path.normpath(tree.root / address))
            return ModuleDescriptor(
                key=key,
                source_address=address,
                normalized_address=address,
                checkout_path=path,
                root_checkout_path=path,
                local=True,
            )

        source = normalize_source(address)
        base = tree.modules_root / key
        checkout = base / source.subpath if source.subpath else base
        return ModuleDescriptor(
            key=key,
            source_address=address,
            normalized_address=source.url,
            checkout_path=checkout,
            root_checkout_path=base,
            revision=source.revision,
        )

    def resolve(self, tree: WorkingTree) -> List[ModuleDescriptor]:
        """Discover, fetch every remote module, then write the manifest.

        Any fetch failure aborts resolution; a partial module set is never
        written to the manifest.
        """
        modules = self.discover(tree)
        for module in modules:
            if module.local:
                self._logger.debug("[MODULES] %s is local (%s)", module.key, module.source_address)
                continue
            self._fetcher.fetch(module.normalized_address, module.root_checkout_path, module.revision)
            self._logger.info(
                "[MODULES] %s -> %s@%s", module.key, module.normalized_address, module.revision or "HEAD"
            )
        self.write_manifest(tree, modules)
        return modules

    def write_manifest(self, tree: WorkingTree, modules: List[ModuleDescriptor]) -> Path:
        entries = [{"Key": "", "Source": "", "Dir": "."}]
        entries.extend(module.to_manifest_entry(tree.root) for module in modules)
        path = tree.manifest_file
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with path.open("w", encoding="utf-8") as fh:
                json.dump({"Modules": entries}, fh, indent=2)
                fh.write("\n")
        except OSError as exc:
            raise ExecutorError(f"failed to write module manifest {path}: {exc}") from exc
        return path
