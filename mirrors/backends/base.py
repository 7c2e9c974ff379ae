"""
Adapter contracts.

A source produces one SecretPayload per pass; a destination receives it.
Both may answer with a ReconcileSignal for expected conditions and raise for
anything else.
"""
from datetime import datetime, timezone
from typing import Optional, Union

from mirrors.context import MirrorContext
from mirrors.payload import SecretPayload
from mirrors.signals import ReconcileSignal


class Source:
    def __init__(self, ctx: MirrorContext):
        self.ctx = ctx

    def setup(self):
        pass

    def retrieve(self) -> Union[SecretPayload, ReconcileSignal]:
        raise NotImplementedError


class Destination:
    def __init__(self, ctx: MirrorContext):
        self.ctx = ctx

    def setup(self):
        pass

    def sync(self, payload: SecretPayload) -> Optional[ReconcileSignal]:
        raise NotImplementedError

    def cleanup(self):
        pass


def sync_timestamp() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
