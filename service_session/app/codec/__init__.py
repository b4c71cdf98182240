"""
Token codecs.

- token_codec: Fernet encode with the active generation, decode with
  fallback across every retained generation.
- serializers: Payload (de)serialization contracts supplied by applications.
- request_token: Short-lived form tokens on their own key ring.
"""
