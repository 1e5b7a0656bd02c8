"""
DynamoDB + S3 storage for scanned documents.
Document files are stored in S3, metadata rows in DynamoDB.
"""

import base64
import logging
import threading
import uuid
from datetime import datetime, timezone
from typing import Optional, List, Dict, Any

import boto3
from boto3.dynamodb.conditions import Attr
from botocore.exceptions import ClientError

logger = logging.getLogger(__name__)

EXTENSIONS = {
    'image/jpeg': 'jpg',
    'image/png': 'png',
    'application/pdf': 'pdf',
}


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def build_file_path(owner_id: str, document_id: str, name: str, content_type: str) -> str:
    """S3 key for a document: documents/<owner>/<id>/<name>.<ext>."""
    ext = EXTENSIONS.get(content_type, 'bin')
    stem = name.rsplit('.', 1)[0] if '.' in name else name
    stem = stem.strip().replace('/', '_') or 'document'
    return f"documents/{owner_id}/{document_id}/{stem}.{ext}"


class DocumentDatabase:
    """Handles all DynamoDB + S3 operations for document storage."""

    def __init__(
        self,
        table_name: str = "Documents",
        bucket_name: Optional[str] = None,
        region_name: str = "us-east-1",
        aws_access_key_id: Optional[str] = None,
        aws_secret_access_key: Optional[str] = None,
        use_local: bool = False,
        local_endpoint: str = "http://localhost:8000",
    ):
        """
        Initialize DynamoDB and S3 connections.

        Args:
            table_name: Name of the DynamoDB table
            bucket_name: Name of the S3 bucket (defaults to table_name + '-files')
            region_name: AWS region
            aws_access_key_id: AWS access key (optional, uses env vars if not provided)
            aws_secret_access_key: AWS secret key (optional, uses env vars if not provided)
            use_local: If True, use a local DynamoDB instance and keep files in the table
            local_endpoint: Endpoint of the local DynamoDB instance
        """
        self.table_name = table_name
        self.bucket_name = bucket_name or f"{table_name.lower()}-files"
        self.region_name = region_name

        session_kwargs = {'region_name': region_name}
        if aws_access_key_id and aws_secret_access_key:
            session_kwargs['aws_access_key_id'] = aws_access_key_id
            session_kwargs['aws_secret_access_key'] = aws_secret_access_key

        if use_local:
            self.dynamodb = boto3.resource(
                'dynamodb',
                endpoint_url=local_endpoint,
                region_name=region_name,
                aws_access_key_id='dummy',
                aws_secret_access_key='dummy'
            )
            self.s3 = None  # No S3 in local mode
            self.use_s3 = False
        else:
            self.dynamodb = boto3.resource('dynamodb', **session_kwargs)
            self.s3 = boto3.client('s3', **session_kwargs)
            self.use_s3 = True

        self.table = self.dynamodb.Table(table_name)

    def create_table_if_not_exists(self) -> bool:
        """
        Create the documents table and S3 bucket if they don't exist.

        Returns:
            True if resources were created, False if they already existed
        """
        created = False

        try:
            self.table.load()
        except ClientError as e:
            if e.response['Error']['Code'] == 'ResourceNotFoundException':
                table = self.dynamodb.create_table(
                    TableName=self.table_name,
                    KeySchema=[
                        {'AttributeName': 'id', 'KeyType': 'HASH'}
                    ],
                    AttributeDefinitions=[
                        {'AttributeName': 'id', 'AttributeType': 'S'}
                    ],
                    BillingMode='PAY_PER_REQUEST'
                )
                table.wait_until_exists()
                self.table = table
                created = True
                logger.info("Created table %s", self.table_name)
            else:
                raise

        if self.use_s3 and self.s3:
            try:
                self.s3.head_bucket(Bucket=self.bucket_name)
            except ClientError as e:
                error_code = e.response['Error']['Code']
                if error_code == '404':
                    if self.region_name == 'us-east-1':
                        self.s3.create_bucket(Bucket=self.bucket_name)
                    else:
                        self.s3.create_bucket(
                            Bucket=self.bucket_name,
                            CreateBucketConfiguration={
                                'LocationConstraint': self.region_name
                            }
                        )
                    created = True
                    logger.info("Created bucket %s", self.bucket_name)
                else:
                    raise

        return created

    def _upload_to_s3(self, key: str, data: bytes, content_type: str) -> None:
        self.s3.put_object(
            Bucket=self.bucket_name,
            Key=key,
            Body=data,
            ContentType=content_type
        )

    def _download_from_s3(self, key: str) -> Optional[bytes]:
        """Download a file from S3, None if it is missing."""
        if not self.use_s3 or not self.s3 or not key:
            return None

        try:
            response = self.s3.get_object(Bucket=self.bucket_name, Key=key)
            return response['Body'].read()
        except ClientError as e:
            logger.warning("Could not download %s: %s", key, e)
            return None

    def _delete_from_s3(self, key: str) -> None:
        if not self.use_s3 or not self.s3 or not key:
            return
        self.s3.delete_object(Bucket=self.bucket_name, Key=key)

    def save_document(
        self,
        owner_id: str,
        name: str,
        data: bytes,
        content_type: str,
        folder_id: Optional[str] = None,
        tags: Optional[List[str]] = None,
        ocr_text: Optional[str] = None,
    ) -> str:
        """
        Save a document - file to S3, metadata to DynamoDB.

        Args:
            owner_id: Owning user
            name: Display name of the document
            data: Encoded file contents
            content_type: MIME type of ``data``
            folder_id: Folder the document belongs to, if any
            tags: List of tags for searching
            ocr_text: Recognized text, stored as-is

        Returns:
            The new document ID
        """
        if not owner_id:
            raise ValueError("owner_id is required")
        if not data:
            raise ValueError("Refusing to store an empty document")

        document_id = str(uuid.uuid4())
        timestamp = _now()
        file_path = build_file_path(owner_id, document_id, name, content_type)

        item = {
            'id': document_id,
            'user_id': owner_id,
            'folder_id': folder_id,
            'name': name,
            'file_path': file_path,
            'content_type': content_type,
            'size': len(data),
            'tags': list(tags or []),
            'ocr_text': ocr_text,
            'created_at': timestamp,
            'updated_at': timestamp,
        }

        if self.use_s3:
            self._upload_to_s3(file_path, data, content_type)
        else:
            # Local/demo mode: keep the file in the row
            item['data_base64'] = base64.b64encode(data).decode('utf-8')

        self.table.put_item(Item=item)
        logger.info("Saved document %s (%s, %d bytes) for %s",
                    document_id, content_type, len(data), owner_id)
        return document_id

    def _load_file(self, item: Dict[str, Any]) -> Optional[bytes]:
        if 'data_base64' in item:
            return base64.b64decode(item.pop('data_base64'))
        return self._download_from_s3(item.get('file_path'))

    def get_document(self, document_id: str, include_data: bool = True) -> Optional[Dict[str, Any]]:
        """
        Retrieve a single document by ID.

        Args:
            document_id: The document's unique identifier
            include_data: Whether to fetch the file contents

        Returns:
            Document row (with ``data`` bytes if requested) or None if not found
        """
        try:
            response = self.table.get_item(Key={'id': document_id})
        except ClientError as e:
            logger.warning("Could not read document %s: %s", document_id, e)
            return None

        item = response.get('Item')
        if not item:
            return None

        if include_data:
            item['data'] = self._load_file(item)
        else:
            item.pop('data_base64', None)
        return item

    def list_documents(
        self,
        owner_id: str,
        folder_id: Optional[str] = None,
        tag: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """
        List an owner's documents, newest first (without file contents).

        Args:
            owner_id: Owning user
            folder_id: Restrict to one folder
            tag: Restrict to documents carrying this tag (case-insensitive)
        """
        condition = Attr('user_id').eq(owner_id)
        if folder_id is not None:
            condition = condition & Attr('folder_id').eq(folder_id)

        items = []
        try:
            response = self.table.scan(FilterExpression=condition)
            items.extend(response.get('Items', []))

            while 'LastEvaluatedKey' in response:
                response = self.table.scan(
                    FilterExpression=condition,
                    ExclusiveStartKey=response['LastEvaluatedKey']
                )
                items.extend(response.get('Items', []))
        except ClientError as e:
            logger.warning("Could not list documents for %s: %s", owner_id, e)
            return []

        for item in items:
            item.pop('data_base64', None)

        if tag:
            tag_lower = tag.lower()
            items = [i for i in items
                     if tag_lower in (t.lower() for t in i.get('tags') or [])]

        items.sort(key=lambda x: x.get('created_at', ''), reverse=True)
        return items

    def update_document(
        self,
        document_id: str,
        name: Optional[str] = None,
        folder_id: Optional[str] = None,
        tags: Optional[List[str]] = None,
        ocr_text: Optional[str] = None,
    ) -> bool:
        """
        Update document metadata.

        Returns:
            True if successful
        """
        update_expr_parts = ['#updated_at = :updated_at']
        expr_attr_names = {'#updated_at': 'updated_at'}
        expr_attr_values = {':updated_at': _now()}

        for attr, value in (('name', name), ('folder_id', folder_id),
                            ('tags', tags), ('ocr_text', ocr_text)):
            if value is not None:
                update_expr_parts.append(f'#{attr} = :{attr}')
                expr_attr_names[f'#{attr}'] = attr
                expr_attr_values[f':{attr}'] = value

        try:
            self.table.update_item(
                Key={'id': document_id},
                UpdateExpression='SET ' + ', '.join(update_expr_parts),
                ConditionExpression='attribute_exists(id)',
                ExpressionAttributeNames=expr_attr_names,
                ExpressionAttributeValues=expr_attr_values
            )
            return True
        except ClientError as e:
            logger.warning("Could not update document %s: %s", document_id, e)
            return False

    def delete_document(self, document_id: str) -> bool:
        """
        Delete a document from both DynamoDB and S3.

        Returns:
            True if successful
        """
        item = self.get_document(document_id, include_data=False)
        if item is None:
            return False

        try:
            self._delete_from_s3(item.get('file_path'))
            self.table.delete_item(Key={'id': document_id})
            return True
        except ClientError as e:
            logger.warning("Could not delete document %s: %s", document_id, e)
            return False

    def get_all_tags(self, owner_id: str) -> List[str]:
        """Sorted unique tags across an owner's documents."""
        all_tags = set()
        for item in self.list_documents(owner_id):
            all_tags.update(item.get('tags') or [])
        return sorted(all_tags)

    def get_document_url(self, document_id: str, expires_in: int = 3600) -> Optional[str]:
        """
        Get a pre-signed URL for a document file in S3.

        Returns:
            Pre-signed URL or None
        """
        if not self.use_s3 or not self.s3:
            return None

        item = self.get_document(document_id, include_data=False)
        if item is None:
            return None
        return self.get_file_url(item['file_path'], expires_in)

    def get_file_url(self, file_path: str, expires_in: int = 3600) -> Optional[str]:
        """
        Pre-signed URL for an S3 key, without reading the row or the file.

        Rows from ``list_documents`` already carry ``file_path``, so a
        gallery can link every document without downloading any of them.
        """
        if not self.use_s3 or not self.s3 or not file_path:
            return None

        try:
            return self.s3.generate_presigned_url(
                'get_object',
                Params={'Bucket': self.bucket_name, 'Key': file_path},
                ExpiresIn=expires_in
            )
        except ClientError as e:
            logger.warning("Could not sign URL for %s: %s", file_path, e)
            return None


class LocalDocumentStore:
    """In-memory document store with the same interface (demo mode)."""

    def __init__(self):
        self._documents: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.Lock()
        self.table_name = "local"
        self.bucket_name = None

    @staticmethod
    def _copy(item: Dict[str, Any]) -> Dict[str, Any]:
        """Copy of a stored row that callers can modify freely."""
        item = dict(item)
        item['tags'] = list(item['tags'])
        return item

    def create_table_if_not_exists(self) -> bool:
        return False

    def save_document(
        self,
        owner_id: str,
        name: str,
        data: bytes,
        content_type: str,
        folder_id: Optional[str] = None,
        tags: Optional[List[str]] = None,
        ocr_text: Optional[str] = None,
    ) -> str:
        if not owner_id:
            raise ValueError("owner_id is required")
        if not data:
            raise ValueError("Refusing to store an empty document")

        document_id = str(uuid.uuid4())
        timestamp = _now()
        with self._lock:
            self._documents[document_id] = {
                'id': document_id,
                'user_id': owner_id,
                'folder_id': folder_id,
                'name': name,
                'file_path': build_file_path(owner_id, document_id, name, content_type),
                'content_type': content_type,
                'size': len(data),
                'tags': list(tags or []),
                'ocr_text': ocr_text,
                'created_at': timestamp,
                'updated_at': timestamp,
                'data': bytes(data),
            }
        logger.info("Saved document %s locally for %s", document_id, owner_id)
        return document_id

    def get_document(self, document_id: str, include_data: bool = True) -> Optional[Dict[str, Any]]:
        with self._lock:
            item = self._documents.get(document_id)
            if item is None:
                return None
            item = self._copy(item)
        if not include_data:
            item.pop('data')
        return item

    def list_documents(
        self,
        owner_id: str,
        folder_id: Optional[str] = None,
        tag: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        with self._lock:
            items = [self._copy(i) for i in self._documents.values()
                     if i['user_id'] == owner_id
                     and (folder_id is None or i['folder_id'] == folder_id)]
        for item in items:
            item.pop('data')
        if tag:
            tag_lower = tag.lower()
            items = [i for i in items if tag_lower in (t.lower() for t in i['tags'])]
        items.sort(key=lambda x: x['created_at'], reverse=True)
        return items

    def update_document(
        self,
        document_id: str,
        name: Optional[str] = None,
        folder_id: Optional[str] = None,
        tags: Optional[List[str]] = None,
        ocr_text: Optional[str] = None,
    ) -> bool:
        with self._lock:
            item = self._documents.get(document_id)
            if item is None:
                return False
            for attr, value in (('name', name), ('folder_id', folder_id),
                                ('tags', tags), ('ocr_text', ocr_text)):
                if value is not None:
                    item[attr] = list(value) if attr == 'tags' else value
            item['updated_at'] = _now()
        return True

    def delete_document(self, document_id: str) -> bool:
        with self._lock:
            return self._documents.pop(document_id, None) is not None

    def get_all_tags(self, owner_id: str) -> List[str]:
        all_tags = set()
        for item in self.list_documents(owner_id):
            all_tags.update(item['tags'])
        return sorted(all_tags)

    def get_document_url(self, document_id: str, expires_in: int = 3600) -> Optional[str]:
        return None

    def get_file_url(self, file_path: str, expires_in: int = 3600) -> Optional[str]:
        return None
