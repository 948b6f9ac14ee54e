import boto3
from botocore.config import Config as BotoConfig
from flask import current_app

EXTENSIONS = {
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/webp": "webp",
    "video/mp4": "mp4",
}


def is_configured():
    """S3 is optional; without credentials media stays in the database."""
    return bool(current_app.config["S3_ACCESS_KEY"] and current_app.config["S3_SECRET_KEY"])


def _get_client():
    return boto3.client(
        "s3",
        endpoint_url=current_app.config["S3_ENDPOINT_URL"] or None,
        aws_access_key_id=current_app.config["S3_ACCESS_KEY"],
        aws_secret_access_key=current_app.config["S3_SECRET_KEY"],
        region_name=current_app.config["S3_REGION"],
        config=BotoConfig(signature_version="s3v4"),
    )


def extension_for(mime_type):
    subtype = mime_type.split("/", 1)[-1].lower() if mime_type else "png"
    return EXTENSIONS.get(mime_type, "jpg" if subtype == "jpeg" else subtype)


def history_image_key(account_id, timestamp_ms, index, mime_type):
    return f"users/{account_id}/history/{timestamp_ms}-{index}.{extension_for(mime_type)}"


def history_video_key(account_id, timestamp_ms, shot_kind):
    return f"users/{account_id}/videos/{timestamp_ms}-{shot_kind}.mp4"


def upload(storage_key, data, content_type="image/jpeg"):
    """Upload bytes to S3 (always private; read back via signed URLs)."""
    client = _get_client()
    bucket = current_app.config["S3_BUCKET_NAME"]
    client.put_object(
        Bucket=bucket,
        Key=storage_key,
        Body=data,
        ContentType=content_type,
        ACL="private",
    )


def get_signed_url(storage_key, expires_in=None):
    """Generate a pre-signed download URL."""
    client = _get_client()
    bucket = current_app.config["S3_BUCKET_NAME"]
    return client.generate_presigned_url(
        "get_object",
        Params={"Bucket": bucket, "Key": storage_key},
        ExpiresIn=expires_in or current_app.config["SIGNED_URL_TTL"],
    )


def delete_many(storage_keys):
    """Delete multiple objects from S3."""
    storage_keys = [k for k in storage_keys if k]
    if not storage_keys or not is_configured():
        return
    client = _get_client()
    bucket = current_app.config["S3_BUCKET_NAME"]
    objects = [{"Key": k} for k in storage_keys]
    client.delete_objects(
        Bucket=bucket,
        Delete={"Objects": objects},
    )
