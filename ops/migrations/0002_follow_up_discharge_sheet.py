import decimal

import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


MONEY = dict(max_digits=15, decimal_places=2)


class Migration(migrations.Migration):

    dependencies = [
        ('ops', '0001_initial'),
    ]

    operations = [
        migrations.CreateModel(
            name='PatientFollowUp',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('admission_date', models.DateField(blank=True, null=True)),
                ('surgery_date', models.DateField(blank=True, null=True)),
                ('prescription', models.TextField(blank=True)),
                ('report', models.TextField(blank=True)),
                ('hospital_name', models.CharField(blank=True, max_length=255)),
                ('doctor_name', models.CharField(blank=True, max_length=255)),
                ('prescription_file_url', models.CharField(blank=True, max_length=500)),
                ('report_file_url', models.CharField(blank=True, max_length=500)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('kyp', models.OneToOneField(on_delete=django.db.models.deletion.CASCADE, related_name='follow_up', to='ops.kypsubmission')),
                ('updated_by', models.ForeignKey(null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='+', to=settings.AUTH_USER_MODEL)),
            ],
        ),
        migrations.CreateModel(
            name='DischargeSheet',
            fields=[
                ('id', models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name='ID')),
                ('discharge_date', models.DateField()),
                ('total_final_bill', models.DecimalField(**MONEY)),
                ('final_approved_amount', models.DecimalField(blank=True, null=True, **MONEY)),
                ('deduction_amount', models.DecimalField(default=decimal.Decimal('0.00'), **MONEY)),
                ('hospital_share_amount', models.DecimalField(blank=True, null=True, **MONEY)),
                ('net_profit', models.DecimalField(blank=True, null=True, **MONEY)),
                ('remarks', models.TextField(blank=True)),
                ('closed_at', models.DateTimeField(blank=True, null=True)),
                ('created_at', models.DateTimeField(auto_now_add=True)),
                ('updated_at', models.DateTimeField(auto_now=True)),
                ('closed_by', models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='+', to=settings.AUTH_USER_MODEL)),
                ('created_by', models.ForeignKey(null=True, on_delete=django.db.models.deletion.SET_NULL, related_name='+', to=settings.AUTH_USER_MODEL)),
                ('lead', models.OneToOneField(on_delete=django.db.models.deletion.CASCADE, related_name='discharge_sheet', to='ops.lead')),
            ],
        ),
    ]
