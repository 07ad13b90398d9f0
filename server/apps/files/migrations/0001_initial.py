import uuid

from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = []

    operations = [
        migrations.CreateModel(
            name='FileRecord',
            fields=[
                ('id', models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ('filename', models.CharField(help_text='Storage-facing name: {id}_{sanitized name}', max_length=255)),
                ('original_filename', models.CharField(help_text='Name supplied by the client at upload time', max_length=255)),
                ('file_path', models.CharField(help_text='Backend-specific storage key of the original', max_length=500)),
                ('file_size', models.PositiveBigIntegerField(help_text='Bytes written to storage')),
                ('mime_type', models.CharField(max_length=100)),
                ('storage_type', models.CharField(choices=[('local', 'Local filesystem'), ('s3', 'S3-compatible object store')], default='local', max_length=50)),
                ('checksum', models.CharField(help_text='SHA256 of the content, used for deduplication', max_length=64, unique=True)),
                ('thumbnail_path', models.CharField(blank=True, help_text='Storage key of the PNG preview, same backend as the file', max_length=500, null=True)),
                ('uploaded_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
            ],
            options={
                'verbose_name': 'File',
                'verbose_name_plural': 'Files',
                'db_table': 'files',
                'ordering': ['-uploaded_at'],
                'indexes': [
                    models.Index(fields=['filename'], name='idx_files_filename'),
                    models.Index(fields=['uploaded_at'], name='idx_files_uploaded_at'),
                    models.Index(fields=['mime_type'], name='idx_files_mime_type'),
                ],
            },
        ),
    ]
