# src/atlas_provision/core/traceability/__init__.py
"""
Pacote de rastreabilidade do Atlas Provision — Manifest v1.

Responsabilidades principais:
    - Criar e manter o Manifest de um apply
    - Registrar o Event Log ordenado de instâncias
    - Persistir e restaurar o Manifest em JSON determinístico
"""

from .manifest import (
    AtlasManifest,
    add_event,
    create_manifest,
    instance_failed,
    instance_finished,
    instance_skipped,
    instance_started,
    load_manifest,
    run_finished,
    save_manifest,
)

__all__ = [
    "AtlasManifest",
    "add_event",
    "create_manifest",
    "instance_failed",
    "instance_finished",
    "instance_skipped",
    "instance_started",
    "load_manifest",
    "run_finished",
    "save_manifest",
]
