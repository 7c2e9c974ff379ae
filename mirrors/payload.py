"""
Secret-like values exchanged between source and destination adapters,
plus the diff / copy rules shared by every destination.
"""
from dataclasses import dataclass, field
from typing import Dict


@dataclass
class SecretPayload:
    name: str = ""
    namespace: str = ""
    type: str = "Opaque"
    labels: Dict[str, str] = field(default_factory=dict)
    annotations: Dict[str, str] = field(default_factory=dict)
    data: Dict[str, bytes] = field(default_factory=dict)
    resource_version: str = ""

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"


def data_differ(src: Dict[str, bytes], dest: Dict[str, bytes]) -> bool:
    """Compare two data maps key by key, byte for byte."""
    if len(src) != len(dest):
        return True
    for k, v in src.items():
        if k not in dest or dest[k] != v:
            return True
    return False


def secret_differ(src: SecretPayload, dest: SecretPayload) -> bool:
    """
    True when labels or data differ.

    Annotations are ignored: the destination carries its own bookkeeping
    annotations that never match the source.
    """
    if len(src.labels) != len(dest.labels):
        return True
    for k, v in src.labels.items():
        if dest.labels.get(k) != v:
            return True
    return data_differ(src.data, dest.data)


def copy_secret(src: SecretPayload, dest: SecretPayload):
    """
    Merge labels/annotations into dest and replace its data wholesale.

    Keys that only exist on dest are preserved so external tooling can
    label mirrored copies.
    """
    dest.labels.update(src.labels)
    dest.annotations.update(src.annotations)
    dest.data = {k: bytes(v) for k, v in src.data.items()}
