from watchparty.utils.security import create_access_token, decode_token, user_id_from_token

__all__ = ["create_access_token", "decode_token", "user_id_from_token"]
