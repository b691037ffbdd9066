import os

from django.contrib.auth import get_user_model
from django.core.management.base import BaseCommand, CommandError


class Command(BaseCommand):
    help = 'Create a back-office admin account unless one with that username exists'

    def add_arguments(self, parser):
        parser.add_argument('--username', default=os.environ.get('DJANGO_SUPERUSER_USERNAME', 'admin'))
        parser.add_argument('--email', default=os.environ.get('DJANGO_SUPERUSER_EMAIL', 'admin@dtprotection.com'))

    def handle(self, *args, **options):
        User = get_user_model()
        username = options['username']

        if User.objects.filter(username=username).exists():
            self.stdout.write(f'Admin "{username}" already exists, skipping.')
            return

        password = os.environ.get('DJANGO_SUPERUSER_PASSWORD')
        if not password:
            raise CommandError('DJANGO_SUPERUSER_PASSWORD must be set to create an admin')
        if len(password) < 8:
            raise CommandError('Admin password must be at least 8 characters')

        User.objects.create_superuser(username=username, email=options['email'], password=password)
        self.stdout.write(self.style.SUCCESS(f'Admin "{username}" created.'))
