import decimal

import django.contrib.auth.models
import django.contrib.auth.validators
import django.core.serializers.json
import django.db.models.deletion
import django.utils.timezone
from django.conf import settings
from django.db import migrations, models


MONEY = dict(max_digits=15, decimal_places=2)

STAGE_CHOICES = [
    ('NEW_LEAD', 'New lead'),
    ('KYP_PENDING', 'KYP pending'),
    ('KYP_COMPLETE', 'KYP complete'),
    ('PREAUTH_RAISED', 'Pre-auth raised'),
    ('PREAUTH_COMPLETE', 'Pre-auth complete'),
    ('INITIATED', 'Initiated'),
    ('ADMITTED', 'Admitted'),
    ('DISCHARGED', 'Discharged'),
]
PIPELINE_CHOICES = [
    ('SALES', 'Sales'),
    ('INSURANCE', 'Insurance'),
    ('PL', 'P&L'),
    ('COMPLETED', 'Completed'),
    ('LOST', 'Lost'),
]
DECISION_CHOICES = [('PENDING', 'Pending'), ('APPROVED', 'Approved'), ('REJECTED', 'Rejected')]


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ('auth', '0012_alter_user_first_name_max_length'),
    ]

    operations = [
        migrations.CreateModel(
            name='Team',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('name', models.CharField(max_length=120, unique=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
            ],
        ),
        migrations.CreateModel(
            name='User',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('password', models.CharField(max_length=128, verbose_name='password')),
                ('last_login', models.DateTimeField(blank=True, null=True, verbose_name='last login')),
                ('is_superuser', models.BooleanField(default=False, help_text='Designates that this user has all permissions without explicitly assigning them.', verbose_name='superuser status')),
                ('username', models.CharField(error_messages={'unique': 'A user with that username already exists.'}, help_text='Required. 150 characters or fewer. Letters, digits and @/./+/-/_ only.', max_length=150, unique=True, validators=[django.contrib.auth.validators.UnicodeUsernameValidator()], verbose_name='username')),
                ('first_name', models.CharField(blank=True, max_length=150, verbose_name='first name')),
                ('last_name', models.CharField(blank=True, max_length=150, verbose_name='last name')),
                ('email', models.EmailField(blank=True, max_length=254, verbose_name='email address')),
                ('is_staff', models.BooleanField(default=False, help_text='Designates whether the user can log into this admin site.', verbose_name='staff status')),
                ('is_active', models.BooleanField(default=True, help_text='Designates whether this user should be treated as active. Unselect this instead of deleting accounts.', verbose_name='active')),
                ('date_joined', models.DateTimeField(default=django.utils.timezone.now, verbose_name='date joined')),
                ('role', models.CharField(choices=[
                    ('MD', 'Managing Director'),
                    ('SALES_HEAD', 'Sales Head'),
                    ('TEAM_LEAD', 'Team Lead'),
                    ('BD', 'Business Development'),
                    ('INSURANCE_HEAD', 'Insurance Head'),
                    ('PL_HEAD', 'P&L Head'),
                    ('HR_HEAD', 'HR Head'),
                    ('FINANCE_HEAD', 'Finance Head'),
                    ('ADMIN', 'Administrator'),
                    ('USER', 'User'),
                ], db_index=True, default='USER', max_length=20)),
                ('groups', models.ManyToManyField(blank=True, help_text='The groups this user belongs to. A user will get all permissions granted to each of their groups.', related_name='user_set', related_query_name='user', to='auth.group', verbose_name='groups')),
                ('user_permissions', models.ManyToManyField(blank=True, help_text='Specific permissions for this user.', related_name='user_set', related_query_name='user', to='auth.permission', verbose_name='user permissions')),
                ('team', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='members', to='ops.team')),
            ],
            options={
                'verbose_name': 'user',
                'verbose_name_plural': 'users',
                'abstract': False,
            },
            managers=[
                ('objects', django.contrib.auth.models.UserManager()),
            ],
        ),
        migrations.AddField(
            model_name='team',
            name='sales_head',
            field=models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='headed_teams', to=settings.AUTH_USER_MODEL),
        ),
        migrations.CreateModel(
            name='Lead',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('lead_ref', models.CharField(max_length=32, unique=True)),
                ('patient_name', models.CharField(max_length=255)),
                ('phone', models.CharField(blank=True, max_length=20)),
                ('city', models.CharField(blank=True, max_length=120)),
                ('disease', models.CharField(blank=True, max_length=255)),
                ('pipeline_stage', models.CharField(choices=PIPELINE_CHOICES, db_index=True, default='SALES', max_length=16)),
                ('case_stage', models.CharField(choices=STAGE_CHOICES, db_index=True, default='NEW_LEAD', max_length=20)),
                ('hospital_name', models.CharField(blank=True, max_length=255)),
                ('ipd_admission_date', models.DateField(blank=True, null=True)),
                ('lost_reason', models.CharField(blank=True, max_length=500)),
                ('lost_at', models.DateTimeField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('bd', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='leads', to=settings.AUTH_USER_MODEL)),
                ('team', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='leads', to='ops.team')),
                ('updated_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='+', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'indexes': [
                    models.Index(fields=['bd', 'case_stage'], name='ops_lead_bd_stage_idx'),
                    models.Index(fields=['pipeline_stage', 'updated_at'], name='ops_lead_pipeline_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='CaseStageHistory',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('from_stage', models.CharField(blank=True, max_length=20)),
                ('to_stage', models.CharField(choices=STAGE_CHOICES, max_length=20)),
                ('note', models.TextField(blank=True)),
                ('changed_at', models.DateTimeField(auto_now_add=True)),
                ('changed_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='+', to=settings.AUTH_USER_MODEL)),
                ('lead', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='stage_history', to='ops.lead')),
            ],
            options={
                'ordering': ['changed_at', 'id'],
                'indexes': [models.Index(fields=['lead', 'changed_at'], name='ops_history_lead_idx')],
            },
        ),
        migrations.CreateModel(
            name='LeadStageEvent',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('from_stage', models.CharField(blank=True, max_length=16)),
                ('to_stage', models.CharField(choices=PIPELINE_CHOICES, max_length=16)),
                ('note', models.TextField(blank=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('changed_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='+', to=settings.AUTH_USER_MODEL)),
                ('lead', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='pipeline_events', to='ops.lead')),
            ],
            options={
                'ordering': ['created_at', 'id'],
            },
        ),
        migrations.CreateModel(
            name='KYPSubmission',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('insurance_card', models.CharField(blank=True, max_length=255)),
                ('insurance_name', models.CharField(blank=True, max_length=255)),
                ('aadhar', models.CharField(blank=True, max_length=32)),
                ('pan', models.CharField(blank=True, max_length=32)),
                ('disease', models.CharField(blank=True, max_length=255)),
                ('location', models.CharField(blank=True, max_length=255)),
                ('remark', models.TextField(blank=True)),
                ('status', models.CharField(choices=[
                    ('PENDING', 'Pending'),
                    ('KYP_DETAILS_ADDED', 'KYP details added'),
                    ('PRE_AUTH_COMPLETE', 'Pre-auth complete'),
                    ('FOLLOW_UP_COMPLETE', 'Follow-up complete'),
                    ('COMPLETED', 'Completed'),
                ], default='PENDING', max_length=24)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('lead', models.OneToOneField(on_delete=django.db.models.deletion.CASCADE, related_name='kyp', to='ops.lead')),
                ('submitted_by', models.ForeignKey(null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='+', to=settings.AUTH_USER_MODEL)),
            ],
        ),
        migrations.CreateModel(
            name='PreAuthorization',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('hospital_suggestions', models.JSONField(blank=True, default=list)),
                ('room_types', models.JSONField(blank=True, default=list)),
                ('requested_hospital_name', models.CharField(blank=True, max_length=255)),
                ('requested_room_type', models.CharField(blank=True, max_length=64)),
                ('disease_description', models.TextField(blank=True)),
                ('expected_admission_date', models.DateField(blank=True, null=True)),
                ('pre_auth_raised_at', models.DateTimeField(blank=True, null=True)),
                ('is_new_hospital_request', models.BooleanField(default=False)),
                ('new_hospital_pre_auth_raised', models.BooleanField(default=False)),
                ('approval_status', models.CharField(choices=DECISION_CHOICES, default='PENDING', max_length=10)),
                ('rejection_reason', models.TextField(blank=True)),
                ('handled_at', models.DateTimeField(blank=True, null=True)),
                ('approved_at', models.DateTimeField(blank=True, null=True)),
                ('rejected_at', models.DateTimeField(blank=True, null=True)),
                ('handled_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='+', to=settings.AUTH_USER_MODEL)),
                ('kyp', models.OneToOneField(on_delete=django.db.models.deletion.CASCADE, related_name='preauth', to='ops.kypsubmission')),
                ('pre_auth_raised_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='+', to=settings.AUTH_USER_MODEL)),
            ],
        ),
        migrations.CreateModel(
            name='AdmissionRecord',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('admission_date', models.DateField()),
                ('admission_time', models.CharField(max_length=16)),
                ('admitting_hospital', models.CharField(max_length=255)),
                ('hospital_address', models.CharField(max_length=500)),
                ('surgery_date', models.DateField()),
                ('surgery_time', models.CharField(max_length=16)),
                ('tpa', models.CharField(max_length=255)),
                ('notes', models.TextField(blank=True)),
                ('ipd_status', models.CharField(blank=True, choices=[
                    ('ADMITTED_DONE', 'Surgery done'),
                    ('POSTPONED', 'Postponed'),
                    ('CANCELLED', 'Cancelled'),
                    ('DISCHARGED', 'Discharged'),
                ], max_length=16)),
                ('ipd_status_reason', models.TextField(blank=True)),
                ('ipd_status_notes', models.TextField(blank=True)),
                ('ipd_status_updated_at', models.DateTimeField(blank=True, null=True)),
                ('new_surgery_date', models.DateField(blank=True, null=True)),
                ('discharge_date', models.DateField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('initiated_by', models.ForeignKey(null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='+', to=settings.AUTH_USER_MODEL)),
                ('lead', models.OneToOneField(on_delete=django.db.models.deletion.CASCADE, related_name='admission', to='ops.lead')),
            ],
        ),
        migrations.CreateModel(
            name='InsuranceCase',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('case_status', models.CharField(choices=[
                    ('PENDING', 'Pending'),
                    ('UNDER_REVIEW', 'Under review'),
                    ('APPROVED', 'Approved'),
                    ('REJECTED', 'Rejected'),
                ], db_index=True, default='PENDING', max_length=16)),
                ('approval_amount', models.DecimalField(blank=True, null=True, **MONEY)),
                ('tpa_remarks', models.TextField(blank=True)),
                ('approved_at', models.DateTimeField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('handled_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='+', to=settings.AUTH_USER_MODEL)),
                ('lead', models.OneToOneField(on_delete=django.db.models.deletion.CASCADE, related_name='insurance_case', to='ops.lead')),
            ],
        ),
        migrations.CreateModel(
            name='CaseChatMessage',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('type', models.CharField(choices=[('USER', 'user'), ('SYSTEM', 'system')], default='USER', max_length=8)),
                ('content', models.TextField()),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('lead', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='chat_messages', to='ops.lead')),
                ('sender', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='+', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'ordering': ['created_at', 'id'],
                'indexes': [models.Index(fields=['lead', 'created_at'], name='ops_chat_lead_idx')],
            },
        ),
        migrations.CreateModel(
            name='Notification',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('type', models.CharField(max_length=32)),
                ('title', models.CharField(max_length=255)),
                ('message', models.TextField()),
                ('link', models.CharField(blank=True, max_length=255)),
                ('related_id', models.CharField(blank=True, max_length=64)),
                ('is_read', models.BooleanField(default=False)),
                ('read_at', models.DateTimeField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('user', models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name='notifications', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'ordering': ['-created_at', '-id'],
                'indexes': [models.Index(fields=['user', 'is_read', 'created_at'], name='ops_notif_user_read_idx')],
            },
        ),
        migrations.CreateModel(
            name='PaymentMode',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('name', models.CharField(max_length=120, unique=True)),
                ('description', models.TextField(blank=True)),
                ('opening_balance', models.DecimalField(default=decimal.Decimal('0.00'), **MONEY)),
                ('current_balance', models.DecimalField(default=decimal.Decimal('0.00'), **MONEY)),
                ('is_active', models.BooleanField(default=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
            ],
        ),
        migrations.CreateModel(
            name='LedgerEntry',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('serial_number', models.CharField(max_length=20, unique=True)),
                ('transaction_type', models.CharField(choices=[
                    ('CREDIT', 'Credit'),
                    ('DEBIT', 'Debit'),
                    ('SELF_TRANSFER', 'Self transfer'),
                ], db_index=True, max_length=16)),
                ('transaction_date', models.DateField()),
                ('description', models.TextField()),
                ('party_name', models.CharField(blank=True, max_length=255)),
                ('head_name', models.CharField(blank=True, max_length=255)),
                ('payment_amount', models.DecimalField(blank=True, null=True, **MONEY)),
                ('component_a', models.DecimalField(blank=True, null=True, **MONEY)),
                ('component_b', models.DecimalField(blank=True, null=True, **MONEY)),
                ('received_amount', models.DecimalField(blank=True, null=True, **MONEY)),
                ('transfer_amount', models.DecimalField(blank=True, null=True, **MONEY)),
                ('opening_balance', models.DecimalField(default=decimal.Decimal('0.00'), **MONEY)),
                ('current_balance', models.DecimalField(default=decimal.Decimal('0.00'), **MONEY)),
                ('status', models.CharField(choices=DECISION_CHOICES, db_index=True, default='PENDING', max_length=10)),
                ('rejection_reason', models.TextField(blank=True)),
                ('approved_at', models.DateTimeField(blank=True, null=True)),
                ('is_deleted', models.BooleanField(db_index=True, default=False)),
                ('deleted_at', models.DateTimeField(blank=True, null=True)),
                ('deleted_reason', models.TextField(blank=True)),
                ('edit_request_status', models.CharField(blank=True, choices=DECISION_CHOICES, db_index=True, max_length=10)),
                ('edit_request_reason', models.TextField(blank=True)),
                ('edit_request_data', models.JSONField(blank=True, default=dict, encoder=django.core.serializers.json.DjangoJSONEncoder)),
                ('edit_previous_data', models.JSONField(blank=True, default=dict, encoder=django.core.serializers.json.DjangoJSONEncoder)),
                ('edit_requested_at', models.DateTimeField(blank=True, null=True)),
                ('edit_approval_reason', models.TextField(blank=True)),
                ('edit_approved_at', models.DateTimeField(blank=True, null=True)),
                ('edit_count', models.PositiveIntegerField(default=0)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('approved_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='+', to=settings.AUTH_USER_MODEL)),
                ('created_by', models.ForeignKey(null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='+', to=settings.AUTH_USER_MODEL)),
                ('deleted_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='+', to=settings.AUTH_USER_MODEL)),
                ('edit_approved_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='+', to=settings.AUTH_USER_MODEL)),
                ('edit_requested_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='+', to=settings.AUTH_USER_MODEL)),
                ('from_payment_mode', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, related_name='transfers_out', to='ops.paymentmode')),
                ('payment_mode', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, related_name='entries', to='ops.paymentmode')),
                ('to_payment_mode', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.PROTECT, related_name='transfers_in', to='ops.paymentmode')),
            ],
            options={
                'verbose_name_plural': 'ledger entries',
                'indexes': [
                    models.Index(fields=['transaction_type', 'status'], name='ops_ledger_type_status_idx'),
                    models.Index(fields=['payment_mode', 'status'], name='ops_ledger_mode_status_idx'),
                    models.Index(fields=['transaction_date'], name='ops_ledger_date_idx'),
                ],
            },
        ),
        migrations.CreateModel(
            name='LedgerAuditLog',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('action', models.CharField(choices=[
                    ('CREATED', 'Created'),
                    ('APPROVED', 'Approved'),
                    ('REJECTED', 'Rejected'),
                    ('UPDATED', 'Updated'),
                    ('DELETED', 'Deleted'),
                    ('EDIT_REQUESTED', 'Edit Requested'),
                    ('EDIT_APPROVED', 'Edit Approved'),
                    ('EDIT_REJECTED', 'Edit Rejected'),
                ], max_length=16)),
                ('previous_data', models.JSONField(blank=True, encoder=django.core.serializers.json.DjangoJSONEncoder, null=True)),
                ('new_data', models.JSONField(blank=True, encoder=django.core.serializers.json.DjangoJSONEncoder, null=True)),
                ('reason', models.TextField(blank=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('entry', models.ForeignKey(on_delete=django.db.models.deletion.PROTECT, related_name='audit_logs', to='ops.ledgerentry')),
                ('performed_by', models.ForeignKey(null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='+', to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'ordering': ['created_at', 'id'],
                'indexes': [models.Index(fields=['entry', 'action'], name='ops_ledger_audit_idx')],
            },
        ),
        migrations.CreateModel(
            name='AuditEvent',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('action', models.CharField(max_length=64)),
                ('object_type', models.CharField(blank=True, max_length=64, null=True)),
                ('object_id', models.IntegerField(blank=True, null=True)),
                ('detail', models.JSONField(blank=True, default=dict, encoder=django.core.serializers.json.DjangoJSONEncoder)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('user', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, to=settings.AUTH_USER_MODEL)),
            ],
            options={
                'indexes': [
                    models.Index(fields=['action', 'created_at'], name='ops_audit_action_idx'),
                    models.Index(fields=['object_type', 'object_id', 'created_at'], name='ops_audit_object_idx'),
                ],
            },
        ),
    ]
