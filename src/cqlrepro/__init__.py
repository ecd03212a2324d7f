"""
cqlrepro - reproduce a paging defect in a Cassandra driver/server pairing.

The harness provisions a throwaway Cassandra container, waits for it to
accept sessions, bootstraps a keyspace and table, seeds a dozen rows and
then drives a fixed sequence of paged scans that provokes the server-side
NullPointerException seen when resuming a paged query from a one-row page.
The container is removed on every exit path.
"""

__version__ = "0.1.0"
