"""Writer/reader classification of the endpoint a credential points at."""

from typing import Callable, Optional

import pymysql

from rdsconnect.models import Classification, Credential

ROLE_QUERY = (
    "SELECT @@aurora_server_id AS server_id, "
    "CASE WHEN rhs.session_id = 'MASTER_SESSION_ID' THEN 'WRITER' ELSE 'READER' END AS instance_role "
    "FROM information_schema.REPLICA_HOST_STATUS AS rhs "
    "WHERE rhs.server_id = @@aurora_server_id"
)
READ_ONLY_QUERY = "SELECT @@global.read_only"


def environment_tier(identity_context: str) -> str:
    name = (identity_context or "").lower()
    if "prod" in name:
        return "production"
    if "staging" in name:
        return "staging"
    if "dev" in name:
        return "development"
    return "other"


class SafetyClassifier:
    """Asks the server itself whether it is currently the writer.

    The role is read from replication status rather than inferred from the
    endpoint name, since roles move under failover.
    """

    def __init__(
        self,
        logger,
        timeout: int = 5,
        port: int = 3306,
        ssl_ca: Optional[str] = None,
        connect: Callable = pymysql.connect,
    ):
        self.logger = logger
        self.timeout = timeout
        self.port = port
        self.ssl_ca = ssl_ca
        self.connect = connect

    def _ssl_options(self):
        if self.ssl_ca:
            return {"ca": self.ssl_ca}
        return {"check_hostname": False}

    def classify(self, credential: Credential) -> Classification:
        try:
            connection = self.connect(
                host=credential.host,
                port=self.port,
                user=credential.username,
                password=credential.token,
                ssl=self._ssl_options(),
                connect_timeout=self.timeout,
                read_timeout=self.timeout,
                write_timeout=self.timeout,
            )
        except pymysql.MySQLError as exc:
            self.logger.warning("Could not connect to %s to verify its role: %s", credential.host, exc)
            return Classification.UNKNOWN

        try:
            return self._query_role(connection)
        except pymysql.MySQLError as exc:
            self.logger.warning("Role verification query failed on %s: %s", credential.host, exc)
            return Classification.UNKNOWN
        finally:
            try:
                connection.close()
            except pymysql.MySQLError:
                pass

    def _query_role(self, connection) -> Classification:
        with connection.cursor() as cursor:
            try:
                cursor.execute(ROLE_QUERY)
                row = cursor.fetchone()
            except pymysql.MySQLError as exc:
                self.logger.debug("Replication status unavailable, falling back to read_only: %s", exc)
                row = None

            if row:
                self.logger.debug("Server %s reports role %s", row[0], row[1])
                return Classification.WRITER if str(row[1]).upper() == "WRITER" else Classification.READER

            cursor.execute(READ_ONLY_QUERY)
            row = cursor.fetchone()

        if row is None:
            return Classification.UNKNOWN
        return Classification.READER if int(row[0]) else Classification.WRITER
