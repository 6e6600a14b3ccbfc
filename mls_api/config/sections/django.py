from mls_api.config.serializable import Serializable


class Django(Serializable):
    secret_key: str = ""
    debug: bool = False
    db_engine: str = "django.db.backends.sqlite3"
    db_name: str = "mls_sync.sqlite3"
    db_host: str = ""
    db_port: str = ""
    db_user: str = ""
    db_password: str = ""
    time_zone: str = "UTC"
