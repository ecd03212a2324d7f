"""Column-store access: sessions, schema bootstrap, seeding and paged scans."""

from cqlrepro.cql.connection import (
    ConnectionConfig,
    ConnectionHandle,
    ConnectionSupervisor,
    TlsOptions,
    TopologyDescriptor,
)
from cqlrepro.cql.scanner import KNOWN_DEFECT_SIGNATURE, PagedScanner, ScanPage, UserRecord, is_known_defect
from cqlrepro.cql.schema import KeyspaceDefinition, SchemaBootstrapper, TableDefinition
from cqlrepro.cql.seeding import DEFAULT_NAMES, build_users, seed_users

__all__ = [
    "DEFAULT_NAMES",
    "KNOWN_DEFECT_SIGNATURE",
    "ConnectionConfig",
    "ConnectionHandle",
    "ConnectionSupervisor",
    "KeyspaceDefinition",
    "PagedScanner",
    "ScanPage",
    "SchemaBootstrapper",
    "TableDefinition",
    "TlsOptions",
    "TopologyDescriptor",
    "UserRecord",
    "build_users",
    "is_known_defect",
    "seed_users",
]
