import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Conversation",
            fields=[
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True, db_index=True, help_text="Timestamp when this record was created"
                    ),
                ),
                (
                    "updated_at",
                    models.DateTimeField(auto_now=True, help_text="Timestamp when this record was last modified"),
                ),
                (
                    "id",
                    models.CharField(
                        editable=False,
                        help_text="Deterministic id derived from the two participant ids",
                        max_length=64,
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                (
                    "last_message_id",
                    models.BigIntegerField(
                        blank=True, help_text="Id of the message the snapshot was taken from", null=True
                    ),
                ),
                (
                    "last_message_content",
                    models.TextField(blank=True, default="", help_text="Display text of the latest message"),
                ),
                (
                    "last_message_type",
                    models.CharField(
                        blank=True,
                        choices=[
                            ("text", "Text"),
                            ("sticker", "Sticker"),
                            ("audio", "Voice Message"),
                            ("image", "Image"),
                            ("file", "File"),
                        ],
                        default="",
                        max_length=10,
                    ),
                ),
                (
                    "last_message_at",
                    models.DateTimeField(
                        blank=True,
                        db_index=True,
                        help_text="Timestamp of most recent message (for sorting conversation lists)",
                        null=True,
                    ),
                ),
                (
                    "last_sequence",
                    models.PositiveBigIntegerField(
                        default=0, help_text="Highest message sequence assigned in this conversation"
                    ),
                ),
                (
                    "last_message_sender",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="+",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "user_higher",
                    models.ForeignKey(
                        help_text="Participant whose id sorts second",
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="conversations_as_higher",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "user_lower",
                    models.ForeignKey(
                        help_text="Participant whose id sorts first",
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="conversations_as_lower",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "db_table": "chat_conversation",
                "ordering": ["-last_message_at", "-created_at"],
            },
        ),
        migrations.CreateModel(
            name="Message",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                (
                    "is_deleted",
                    models.BooleanField(
                        db_index=True, default=False, help_text="Whether this record has been soft deleted"
                    ),
                ),
                (
                    "deleted_at",
                    models.DateTimeField(
                        blank=True, help_text="Timestamp when this record was soft deleted", null=True
                    ),
                ),
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True, db_index=True, help_text="Timestamp when this record was created"
                    ),
                ),
                (
                    "updated_at",
                    models.DateTimeField(auto_now=True, help_text="Timestamp when this record was last modified"),
                ),
                ("sequence", models.PositiveBigIntegerField(help_text="Assignment order within the conversation")),
                (
                    "message_type",
                    models.CharField(
                        choices=[
                            ("text", "Text"),
                            ("sticker", "Sticker"),
                            ("audio", "Voice Message"),
                            ("image", "Image"),
                            ("file", "File"),
                        ],
                        db_index=True,
                        default="text",
                        max_length=10,
                    ),
                ),
                (
                    "content",
                    models.TextField(
                        blank=True,
                        default="",
                        help_text="Message text, or a display label for attachments and stickers",
                    ),
                ),
                ("audio_url", models.URLField(blank=True, default="", max_length=1024)),
                (
                    "duration",
                    models.CharField(
                        blank=True, default="", help_text='Voice note length as displayed, e.g. "0:45"', max_length=16
                    ),
                ),
                ("image_url", models.URLField(blank=True, default="", max_length=1024)),
                ("file_url", models.URLField(blank=True, default="", max_length=1024)),
                ("file_name", models.CharField(blank=True, default="", max_length=255)),
                ("file_size", models.PositiveBigIntegerField(blank=True, null=True)),
                ("sticker_url", models.URLField(blank=True, default="", max_length=1024)),
                (
                    "status",
                    models.CharField(
                        choices=[("sent", "Sent"), ("delivered", "Delivered"), ("read", "Read")],
                        db_index=True,
                        default="sent",
                        max_length=10,
                    ),
                ),
                ("is_read", models.BooleanField(default=False)),
                ("delivered_at", models.DateTimeField(blank=True, null=True)),
                ("read_at", models.DateTimeField(blank=True, null=True)),
                ("is_edited", models.BooleanField(default=False)),
                ("edited_at", models.DateTimeField(blank=True, null=True)),
                ("reply_to_message_id", models.BigIntegerField(blank=True, null=True)),
                ("reply_to_content", models.TextField(blank=True, default="")),
                ("reply_to_sender_name", models.CharField(blank=True, default="", max_length=150)),
                (
                    "reply_to_type",
                    models.CharField(
                        blank=True,
                        choices=[
                            ("text", "Text"),
                            ("sticker", "Sticker"),
                            ("audio", "Voice Message"),
                            ("image", "Image"),
                            ("file", "File"),
                        ],
                        default="",
                        max_length=10,
                    ),
                ),
                ("is_crisis", models.BooleanField(db_index=True, default=False)),
                (
                    "client_id",
                    models.CharField(
                        blank=True,
                        default="",
                        help_text="Sender-generated token echoed back to reconcile optimistic state",
                        max_length=64,
                    ),
                ),
                (
                    "conversation",
                    models.ForeignKey(
                        help_text="Conversation this message belongs to",
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="messages",
                        to="chat.conversation",
                    ),
                ),
                (
                    "receiver",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="received_direct_messages",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
                (
                    "sender",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="sent_direct_messages",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "db_table": "chat_message",
                "ordering": ["sequence"],
            },
        ),
        migrations.CreateModel(
            name="MessageReaction",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True, db_index=True, help_text="Timestamp when this record was created"
                    ),
                ),
                (
                    "updated_at",
                    models.DateTimeField(auto_now=True, help_text="Timestamp when this record was last modified"),
                ),
                (
                    "reaction_type",
                    models.CharField(
                        choices=[
                            ("like", "Like"),
                            ("love", "Love"),
                            ("care", "Care"),
                            ("support", "Support"),
                            ("sad", "Sad"),
                            ("angry", "Angry"),
                        ],
                        max_length=10,
                    ),
                ),
                (
                    "message",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="reactions",
                        to="chat.message",
                    ),
                ),
                (
                    "user",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="message_reactions",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "db_table": "chat_message_reaction",
                "ordering": ["created_at", "id"],
            },
        ),
        migrations.AddConstraint(
            model_name="conversation",
            constraint=models.UniqueConstraint(fields=("user_lower", "user_higher"), name="chat_conv_unique_pair"),
        ),
        migrations.AddIndex(
            model_name="conversation",
            index=models.Index(fields=["user_lower", "-last_message_at"], name="chat_conv_lower_recent_idx"),
        ),
        migrations.AddIndex(
            model_name="conversation",
            index=models.Index(fields=["user_higher", "-last_message_at"], name="chat_conv_higher_recent_idx"),
        ),
        migrations.AddConstraint(
            model_name="message",
            constraint=models.UniqueConstraint(fields=("conversation", "sequence"), name="chat_msg_unique_sequence"),
        ),
        migrations.AddConstraint(
            model_name="message",
            constraint=models.UniqueConstraint(
                condition=models.Q(("client_id", ""), _negated=True),
                fields=("sender", "client_id"),
                name="chat_msg_unique_client_id",
            ),
        ),
        migrations.AddIndex(
            model_name="message",
            index=models.Index(fields=["receiver", "is_read"], name="chat_msg_receiver_unread_idx"),
        ),
        migrations.AddIndex(
            model_name="message",
            index=models.Index(fields=["sender", "-created_at"], name="chat_msg_sender_idx"),
        ),
        migrations.AddConstraint(
            model_name="messagereaction",
            constraint=models.UniqueConstraint(fields=("message", "user"), name="chat_reaction_one_per_user"),
        ),
    ]
