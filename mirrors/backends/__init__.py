"""
Adapter selection: one closed mapping per side, keyed by the wire kind.
"""
from typing import Dict, Type

from mirrors.backends.base import Destination, Source
from mirrors.backends.dest_namespaces import NamespacesDestination
from mirrors.backends.dest_vault import VaultSecretDestination
from mirrors.backends.source_secret import KubernetesSecretSource
from mirrors.backends.source_vault import VaultSecretSource
from mirrors.context import MirrorContext
from mirrors.models import DestinationType, SourceType

SOURCES: Dict[SourceType, Type[Source]] = {
    SourceType.SECRET: KubernetesSecretSource,
    SourceType.VAULT: VaultSecretSource,
}

DESTINATIONS: Dict[DestinationType, Type[Destination]] = {
    DestinationType.NAMESPACES: NamespacesDestination,
    DestinationType.VAULT: VaultSecretDestination,
}


def make_source(ctx: MirrorContext) -> Source:
    kind = ctx.mirror.spec.source.type
    try:
        source_type = SourceType(kind)
    except ValueError:
        raise ValueError(f"source.type {kind} is unsupported") from None
    return SOURCES[source_type](ctx)


def make_destination(ctx: MirrorContext) -> Destination:
    kind = ctx.mirror.spec.destination.type
    try:
        destination_type = DestinationType(kind)
    except ValueError:
        raise ValueError(f"destination.type {kind} is unsupported") from None
    return DESTINATIONS[destination_type](ctx)
