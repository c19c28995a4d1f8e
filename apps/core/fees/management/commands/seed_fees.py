from django.core.management.base import BaseCommand
from django.db import transaction
from faker import Faker

from apps.core.academic_sessions.models import AcademicYear
from apps.core.academic_sessions.services import activate_academic_year
from apps.core.fees.models import OptionalFee
from apps.core.fees.services import (
    create_fee_template,
    create_optional_fee,
    get_fee_template,
)
from apps.core.students.models import Student


KINDER_MODULES = 'Modules - Reading, Language, Math'
PRIMARY_MODULES = 'Modules - Reading, Language, Math, Makabansa, Filipino, GMRC'

# grade level: (modules description, modules, supplementary description, other fee description, other fee, tuition)
GRADE_FEES = {
    'Kinder 1': (KINDER_MODULES, '2100.00', 'Supplementary Learning Materials GMRC/Other Activities', 'Other Fee (included aircon fee)', '5800.00', '6500.00'),
    'Kinder 2': (KINDER_MODULES, '2100.00', 'Supplementary Learning Materials GMRC/Other Activities', 'Other Fee (included aircon fee)', '5800.00', '6500.00'),
    'Grade 1': (PRIMARY_MODULES, '4900.00', 'Supplementary Learning', 'Other Fee', '5800.00', '7000.00'),
    'Grade 2': (PRIMARY_MODULES, '4900.00', 'Supplementary Learning', 'Other Fee', '5800.00', '7000.00'),
    'Grade 3': (PRIMARY_MODULES, '4900.00', 'Supplementary Learning', 'Other Fee', '5800.00', '7000.00'),
    'Grade 4': ('Modules', '4900.00', 'Supplementary Learning', 'Other Fee', '6000.00', '7500.00'),
    'Grade 5': ('Modules', '4900.00', 'Supplementary Learning', 'Other Fee', '6000.00', '7500.00'),
    'Grade 6': ('Modules', '4900.00', 'Supplementary Learning', 'Other Fee', '6000.00', '7500.00'),
    'Grade 7': ('Modules', '5600.00', 'Supplementary Learning', 'Other Fee', '6000.00', '8000.00'),
    'Grade 8': ('Modules', '5600.00', 'Supplementary Learning', 'Other Fee', '6000.00', '8000.00'),
    'Grade 9': ('Modules', '5600.00', 'Supplementary Learning', 'Other Fee', '6000.00', '8000.00'),
    'Grade 10': ('Modules', '5600.00', 'Supplementary Learning', 'Other Fee', '6000.00', '8000.00'),
}

OPTIONAL_FEES = [
    {
        'name': 'School ID',
        'description': 'Official school identification card',
        'category': OptionalFee.CATEGORY_ID_CARD,
        'amount': '250.00',
    },
    {
        'name': 'PE Uniform',
        'description': 'Physical education uniform set',
        'category': OptionalFee.CATEGORY_UNIFORM,
        'amount': '1150.00',
    },
    {
        'name': 'Foundation T-Shirt',
        'description': 'Official foundation t-shirt',
        'category': OptionalFee.CATEGORY_UNIFORM,
        'amount': '250.00',
    },
    {
        'name': 'Daily Uniform',
        'description': 'Official daily school uniform (price varies by gender and sleeve type)',
        'category': OptionalFee.CATEGORY_UNIFORM,
        'variations': [
            {'name': 'Girl - Short Sleeve', 'amount': '1173.00'},
            {'name': 'Boy - Short Sleeve', 'amount': '1193.00'},
            {'name': 'Girl - Long Sleeve', 'amount': '1248.00'},
            {'name': 'Boy - Long Sleeve', 'amount': '1268.00'},
        ],
    },
    {
        'name': 'Graduation Fee',
        'description': 'Graduation ceremony and related expenses',
        'category': OptionalFee.CATEGORY_GRADUATION,
        'amount': '2650.00',
        'applicable_grade_levels': ['Kinder 2', 'Grade 6', 'Grade 10'],
    },
    {
        'name': 'Recognition Fee',
        'description': 'Recognition ceremony expenses',
        'category': OptionalFee.CATEGORY_MISCELLANEOUS,
        'amount': '850.00',
    },
    {
        'name': 'Form 137 (Transfer)',
        'description': 'Form 137 for students planning to transfer',
        'category': OptionalFee.CATEGORY_CERTIFICATION,
        'amount': '400.00',
    },
    {
        'name': 'Certifications',
        'description': 'Various school certifications',
        'category': OptionalFee.CATEGORY_CERTIFICATION,
        'amount': '100.00',
    },
    {
        'name': 'Notebook',
        'description': 'School notebook',
        'category': OptionalFee.CATEGORY_BOOKS,
        'amount': '50.00',
    },
]


def breakdown_items(grade_level):
    modules_label, modules, supplementary_label, other_label, other_fee, tuition = GRADE_FEES[grade_level]
    return [
        {'description': 'Entrance Fee', 'amount': '3000.00', 'category': 'REGISTRATION', 'is_refundable': False},
        {'description': modules_label, 'amount': modules, 'category': 'BOOKS'},
        {'description': supplementary_label, 'amount': '700.00', 'category': 'BOOKS'},
        {'description': 'Miscellaneous', 'amount': '4500.00', 'category': 'MISC'},
        {'description': other_label, 'amount': other_fee, 'category': 'MISC'},
        {'description': 'Tuition Fee', 'amount': tuition, 'category': 'TUITION', 'is_refundable': False},
    ]


class Command(BaseCommand):
    help = 'Seeds the 2025-2026 fee templates, optional fees and sample students.'

    def add_arguments(self, parser):
        parser.add_argument('--students', type=int, default=5, help='Sample students to create per grade level.')
        parser.add_argument('--year', default='2025-2026', help='Academic year name.')

    @transaction.atomic
    def handle(self, *args, **options):
        self.stdout.write('Seeding fee data...')

        fake = Faker()
        year_name = options['year']
        start_year = int(year_name.split('-')[0])

        academic_year, created = AcademicYear.objects.get_or_create(
            name=year_name,
            defaults={
                'start_date': f'{start_year}-08-01',
                'end_date': f'{start_year + 1}-05-31',
            },
        )
        if created:
            activate_academic_year(academic_year=academic_year)
            self.stdout.write(self.style.SUCCESS(f'Created academic year: {academic_year.name}'))

        for grade_level in GRADE_FEES:
            if get_fee_template(grade_level=grade_level, academic_year=academic_year):
                self.stdout.write(f'Fee template already exists for {grade_level}')
                continue
            template = create_fee_template(
                academic_year=academic_year,
                grade_level=grade_level,
                name=f'{grade_level} - Cash Scheme {start_year}',
                description=f'Full payment scheme for {grade_level}',
                breakdowns=breakdown_items(grade_level),
            )
            self.stdout.write(self.style.SUCCESS(f'Created fee template: {template.name} ({template.total_amount})'))

        for sort_order, row in enumerate(OPTIONAL_FEES, start=1):
            if OptionalFee.objects.filter(academic_year=academic_year, name=row['name']).exists():
                continue
            optional_fee = create_optional_fee(academic_year=academic_year, sort_order=sort_order, **row)
            self.stdout.write(self.style.SUCCESS(f'Created optional fee: {optional_fee.name}'))

        created_students = 0
        for grade_level in GRADE_FEES:
            for _ in range(options['students']):
                student_number = f'{start_year}-{fake.unique.random_number(digits=6, fix_len=True)}'
                _, created = Student.objects.get_or_create(
                    student_number=student_number,
                    defaults={
                        'first_name': fake.first_name(),
                        'last_name': fake.last_name(),
                        'grade_level': grade_level,
                    },
                )
                created_students += int(created)

        if created_students:
            self.stdout.write(self.style.SUCCESS(f'Created {created_students} students'))

        self.stdout.write(self.style.SUCCESS('Fee seeding complete!'))
