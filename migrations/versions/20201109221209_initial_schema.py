"""initial schema: photos, sources, secret_keys

Revision ID: 20201109221209
Revises:
Create Date: 2020-11-09 22:12:09

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20201109221209"
down_revision = None
branch_labels = None
depends_on = None

POSTGRES_SCHEMA = """
CREATE TABLE IF NOT EXISTS photos (
	id SERIAL PRIMARY KEY,

	-- File name without file extension, for deduplication purposes.
	file_stem VARCHAR NOT NULL,

	title VARCHAR,
	taken_timestamp VARCHAR,

	-- Percentage offset into the photo to use when photo is being cropped due to size constraints.
	height_offset INTEGER NOT NULL DEFAULT 50,
	CHECK (height_offset >= 0),
	CHECK (height_offset <= 100),

	tags VARCHAR[] NOT NULL DEFAULT '{}',
	published BOOLEAN DEFAULT FALSE
);

CREATE INDEX IF NOT EXISTS idx_photos_tags ON photos USING GIN(tags);


CREATE TABLE IF NOT EXISTS sources (
	photo_id INTEGER REFERENCES photos (id) ON DELETE CASCADE ON UPDATE CASCADE,

	width INTEGER NOT NULL,
	CHECK (width < 10000),

	height INTEGER NOT NULL,
	CHECK (height < 10000),

	url VARCHAR NOT NULL,

	UNIQUE (photo_id, width, height),
	UNIQUE (url)
);


CREATE TABLE IF NOT EXISTS secret_keys (
	secret_key VARCHAR PRIMARY KEY
)
"""


def upgrade() -> None:
    conn = op.get_bind()
    if conn.dialect.name == "postgresql":
        op.execute(POSTGRES_SCHEMA)
        return

    # SQLite and other dialects used in tests: tags are stored as a JSON array.
    op.create_table(
        "photos",
        sa.Column("id", sa.Integer, primary_key=True),
        sa.Column("file_stem", sa.String(), nullable=False),
        sa.Column("title", sa.String()),
        sa.Column("taken_timestamp", sa.String()),
        sa.Column(
            "height_offset", sa.Integer, nullable=False, server_default=sa.text("50")
        ),
        sa.Column("tags", sa.JSON(), nullable=False, server_default=sa.text("'[]'")),
        sa.Column("published", sa.Boolean(), server_default=sa.false()),
        sa.CheckConstraint("height_offset >= 0"),
        sa.CheckConstraint("height_offset <= 100"),
    )
    op.create_index("idx_photos_tags", "photos", ["tags"])
    op.create_table(
        "sources",
        sa.Column(
            "photo_id",
            sa.Integer,
            sa.ForeignKey("photos.id", ondelete="CASCADE", onupdate="CASCADE"),
        ),
        sa.Column("width", sa.Integer, nullable=False),
        sa.Column("height", sa.Integer, nullable=False),
        sa.Column("url", sa.String(), nullable=False),
        sa.CheckConstraint("width < 10000"),
        sa.CheckConstraint("height < 10000"),
        sa.UniqueConstraint("photo_id", "width", "height"),
        sa.UniqueConstraint("url"),
    )
    op.create_table(
        "secret_keys",
        sa.Column("secret_key", sa.String(), primary_key=True),
    )


def downgrade() -> None:
    op.execute("DROP TABLE IF EXISTS secret_keys")
    op.execute("DROP TABLE IF EXISTS sources")
    op.execute("DROP INDEX IF EXISTS idx_photos_tags")
    op.execute("DROP TABLE IF EXISTS photos")
