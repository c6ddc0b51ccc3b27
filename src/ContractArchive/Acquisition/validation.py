# === NAVMAP v1 ===
# {
#   "module": "ContractArchive.Acquisition.validation",
#   "purpose": "Structural checks for contract ABIs and compiler metadata.",
#   "sections": [
#     {"id": "is-valid-solidity-type", "name": "is_valid_solidity_type", "anchor": "function-is-valid-solidity-type", "kind": "function"},
#     {"id": "validate-abi", "name": "validate_abi", "anchor": "function-validate-abi", "kind": "function"},
#     {"id": "validate-metadata-structure", "name": "validate_metadata_structure", "anchor": "function-validate-metadata-structure", "kind": "function"}
#   ]
# }
# === /NAVMAP ===

"""Structural checks for contract ABIs and compiler metadata.

The pydantic models in :mod:`schemas` only pin the fields the archive itself
depends on. This module looks inside the ABI:

- every entry is an object with a known ``type``
- functions, events and errors carry a ``name``
- ``stateMutability`` is legal for the entry kind
- parameter types are well-formed Solidity types, tuples carry
  ``components``, and events index at most three inputs

Problems that make the document unusable are *errors*; oddities that a real
contract can legitimately have (duplicate overload names, an empty ABI, no
sources) are *warnings*. Callers decide what to do with either list.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, List, Mapping, Optional, Set, Tuple

ABI_ITEM_TYPES = ("function", "event", "error", "constructor", "fallback", "receive")
FUNCTION_MUTABILITY = ("pure", "view", "nonpayable", "payable")
PAYABLE_MUTABILITY = ("nonpayable", "payable")
MAX_INDEXED_EVENT_INPUTS = 3

_BASIC_TYPES = frozenset(
    {"address", "bool", "string", "bytes", "uint", "int", "fixed", "ufixed", "function"}
)
_ARRAY_SUFFIX = re.compile(r"(\[\d*\])+$")
_SIZED_INT = re.compile(r"^u?int(\d+)$")
_SIZED_BYTES = re.compile(r"^bytes(\d+)$")


@dataclass
class AbiStats:
    functions: int = 0
    events: int = 0
    errors: int = 0
    constructor: bool = False
    fallback: bool = False
    receive: bool = False


@dataclass
class StructureReport:
    """Errors and warnings collected while checking one document."""

    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    stats: AbiStats = field(default_factory=AbiStats)

    @property
    def valid(self) -> bool:
        return not self.errors


def is_valid_solidity_type(type_name: str) -> bool:
    """Whether ``type_name`` is an ABI parameter type (arrays and tuples included)."""
    if type_name in _BASIC_TYPES or type_name == "tuple":
        return True
    if _ARRAY_SUFFIX.search(type_name):
        base = _ARRAY_SUFFIX.sub("", type_name)
        return bool(base) and is_valid_solidity_type(base)
    sized = _SIZED_INT.match(type_name)
    if sized:
        bits = int(sized.group(1))
        return 0 < bits <= 256 and bits % 8 == 0
    sized = _SIZED_BYTES.match(type_name)
    if sized:
        return 0 < int(sized.group(1)) <= 32
    return False


def _check_parameters(parameters: Any, context: str, report: StructureReport) -> None:
    if not isinstance(parameters, list):
        report.errors.append(f"{context} must be an array")
        return
    for index, param in enumerate(parameters):
        if not isinstance(param, Mapping):
            report.errors.append(f"{context} parameter at index {index} is not an object")
            continue
        type_name = param.get("type")
        if not type_name or not isinstance(type_name, str):
            report.errors.append(f"{context} parameter at index {index} missing type")
            continue
        if not is_valid_solidity_type(type_name):
            report.errors.append(
                f"{context} parameter at index {index} has invalid type: {type_name}"
            )
        if type_name == "tuple" or type_name.startswith("tuple["):
            components = param.get("components")
            if not isinstance(components, list):
                report.errors.append(
                    f"{context} tuple parameter at index {index} missing components"
                )
            else:
                _check_parameters(
                    components, f"{context} tuple parameter {index} components", report
                )


def _check_named(
    item: Mapping[str, Any],
    kind: str,
    index: int,
    report: StructureReport,
    seen: Optional[Set[str]],
) -> Optional[str]:
    name = item.get("name")
    if not name or not isinstance(name, str):
        report.errors.append(f"{kind} at index {index} missing name")
        return None
    if seen is not None:
        if name in seen:
            report.warnings.append(f"Duplicate {kind.lower()} name: {name}")
        seen.add(name)
    if "inputs" in item:
        _check_parameters(item["inputs"], f"{kind} {name} inputs", report)
    return name


def _check_mutability(
    item: Mapping[str, Any], allowed: Tuple[str, ...], label: str, report: StructureReport
) -> None:
    mutability = item.get("stateMutability")
    if mutability and mutability not in allowed:
        report.errors.append(f"{label} has invalid stateMutability: {mutability}")


def validate_abi(abi: Any) -> StructureReport:
    """Check an ABI array entry by entry.

    Args:
        abi: Decoded ``abi.json`` content or ``output.abi`` from metadata.

    Returns:
        Report with per-entry errors and warnings plus entry counts. An
        empty ABI is only a warning.
    """
    report = StructureReport()
    if not isinstance(abi, list):
        report.errors.append("ABI must be an array")
        return report
    if not abi:
        report.warnings.append("ABI is empty")
        return report

    function_names: Set[str] = set()
    event_names: Set[str] = set()
    stats = report.stats
    for index, item in enumerate(abi):
        if not isinstance(item, Mapping):
            report.errors.append(f"ABI item at index {index} is not an object")
            continue
        item_type = item.get("type")
        if not item_type:
            report.errors.append(f"ABI item at index {index} missing type field")
            continue
        if item_type not in ABI_ITEM_TYPES:
            report.errors.append(f"ABI item at index {index} has invalid type: {item_type}")
            continue

        if item_type == "function":
            stats.functions += 1
            name = _check_named(item, "Function", index, report, function_names)
            if name is not None:
                _check_mutability(item, FUNCTION_MUTABILITY, f"Function {name}", report)
                if "outputs" in item:
                    _check_parameters(item["outputs"], f"Function {name} outputs", report)
        elif item_type == "event":
            stats.events += 1
            name = _check_named(item, "Event", index, report, event_names)
            inputs = item.get("inputs")
            if name is not None and isinstance(inputs, list):
                indexed = sum(
                    1 for param in inputs if isinstance(param, Mapping) and param.get("indexed")
                )
                limit = MAX_INDEXED_EVENT_INPUTS + (1 if item.get("anonymous") else 0)
                if indexed > limit:
                    report.errors.append(
                        f"Event {name} has too many indexed parameters ({indexed}, max {limit})"
                    )
        elif item_type == "error":
            stats.errors += 1
            _check_named(item, "Error", index, report, None)
        elif item_type == "constructor":
            if stats.constructor:
                report.warnings.append("Multiple constructor definitions found")
            stats.constructor = True
            _check_mutability(item, PAYABLE_MUTABILITY, "Constructor", report)
            if "inputs" in item:
                _check_parameters(item["inputs"], "Constructor inputs", report)
        elif item_type == "fallback":
            if stats.fallback:
                report.warnings.append("Multiple fallback definitions found")
            stats.fallback = True
            _check_mutability(item, PAYABLE_MUTABILITY, "Fallback", report)
        else:
            if stats.receive:
                report.warnings.append("Multiple receive definitions found")
            stats.receive = True
            _check_mutability(item, ("payable",), "Receive function", report)

    if stats.functions == 0 and stats.events == 0:
        report.warnings.append("ABI contains no functions or events")
    return report


def validate_metadata_structure(metadata: Any) -> StructureReport:
    """Check compiler metadata: compiler version, ``output.abi`` and sources."""
    report = StructureReport()
    if not isinstance(metadata, Mapping):
        report.errors.append("Metadata must be an object")
        return report

    compiler = metadata.get("compiler")
    if not isinstance(compiler, Mapping) or not compiler:
        report.errors.append("Metadata missing compiler information")
    elif not compiler.get("version"):
        report.errors.append("Metadata missing compiler version")

    output = metadata.get("output")
    if not isinstance(output, Mapping) or not output:
        report.errors.append("Metadata missing output section")
    elif "abi" not in output or output["abi"] is None:
        report.errors.append("Metadata output missing ABI")
    else:
        abi_report = validate_abi(output["abi"])
        report.errors.extend(abi_report.errors)
        report.warnings.extend(abi_report.warnings)
        report.stats = abi_report.stats

    sources = metadata.get("sources")
    if sources is not None:
        if not isinstance(sources, Mapping):
            report.errors.append("Metadata sources must be an object")
        elif not sources:
            report.warnings.append("Metadata sources is empty")
    return report


__all__ = [
    "ABI_ITEM_TYPES",
    "AbiStats",
    "StructureReport",
    "is_valid_solidity_type",
    "validate_abi",
    "validate_metadata_structure",
]
