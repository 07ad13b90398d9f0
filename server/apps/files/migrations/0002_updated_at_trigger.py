"""Keep ``files.updated_at`` fresh for writes that bypass the ORM.

PostgreSQL only; other databases rely on ``auto_now``.
"""

from django.db import migrations

_CREATE_TRIGGER = """
CREATE OR REPLACE FUNCTION update_updated_at_column()
RETURNS TRIGGER AS $$
BEGIN
    NEW.updated_at = CURRENT_TIMESTAMP;
    RETURN NEW;
END;
$$ language 'plpgsql';

CREATE TRIGGER update_files_updated_at BEFORE UPDATE
    ON files FOR EACH ROW EXECUTE FUNCTION update_updated_at_column();
"""

_DROP_TRIGGER = """
DROP TRIGGER IF EXISTS update_files_updated_at ON files;
DROP FUNCTION IF EXISTS update_updated_at_column();
"""


def _create_trigger(apps, schema_editor):
    if schema_editor.connection.vendor == 'postgresql':
        schema_editor.execute(_CREATE_TRIGGER)


def _drop_trigger(apps, schema_editor):
    if schema_editor.connection.vendor == 'postgresql':
        schema_editor.execute(_DROP_TRIGGER)


class Migration(migrations.Migration):

    dependencies = [
        ('files', '0001_initial'),
    ]

    operations = [
        migrations.RunPython(_create_trigger, _drop_trigger),
    ]
