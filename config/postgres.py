import os

import psycopg
from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict

load_dotenv()


class PostgresConfig(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    host: str
    port: int
    dbname: str
    user: str
    password: str
    storage_table: str = "registration_session_storage"

    @classmethod
    def from_env(cls) -> "PostgresConfig":
        return cls(
            host=os.environ["PG_HOST"],
            port=int(os.environ["PG_PORT"]),
            dbname=os.environ["PG_DB"],
            user=os.environ["PG_USER"],
            password=os.environ["PG_PASSWORD"],
            storage_table=os.getenv("PG_STORAGE_TABLE", "registration_session_storage"),
        )

    def connect(self) -> psycopg.Connection:
        conn = psycopg.connect(
            host=self.host,
            port=self.port,
            dbname=self.dbname,
            user=self.user,
            password=self.password,
        )
        conn.autocommit = True
        return conn
