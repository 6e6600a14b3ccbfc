from mls_api.config.serializable import Serializable


class Storage(Serializable):
    # "local" stores through Django's file storage, "s3" through boto3.
    backend: str = "local"
    local_root: str = "~/.local/share/mls-sync/media"
    local_base_url: str = "/media/"
    bucket: str = ""
    region: str = "us-east-1"
    endpoint_url: str = ""
    access_key_id: str = ""
    secret_access_key: str = ""
    cdn_base_url: str = ""
