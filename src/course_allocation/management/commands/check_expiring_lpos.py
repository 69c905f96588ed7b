"""Management command to send LPO expiry notices.

Meant to be run once a day from cron. Re-running on the same day only
retries orders whose notice failed.
"""

from django.core.management.base import BaseCommand, CommandError
from django.utils import timezone
from django.utils.dateparse import parse_date

from course_allocation import conf
from course_allocation.services import BookingOrchestrator


class Command(BaseCommand):
    help = 'Notify customers whose LPOs expire in the configured number of days'

    def add_arguments(self, parser):
        parser.add_argument(
            '--as-of',
            default=None,
            help='Run the check as of this date, YYYY-MM-DD (default: today)'
        )
        parser.add_argument(
            '--days',
            type=int,
            default=None,
            help=f'Days before expiry to notify (default: {conf.expiry_notice_days()})'
        )
        parser.add_argument(
            '--dry-run',
            action='store_true',
            help='List the LPOs that would be notified without sending anything'
        )
        parser.add_argument(
            '--database',
            default='default',
            help='Database alias to use (default: default)'
        )

    def handle(self, *args, **options):
        as_of = timezone.localdate()
        if options['as_of']:
            as_of = parse_date(options['as_of'])
            if as_of is None:
                raise CommandError(f"Invalid --as-of date: {options['as_of']}")

        days = options['days']
        if days is not None and days < 0:
            raise CommandError('--days cannot be negative')

        orchestrator = BookingOrchestrator(using=options['database'])
        result = orchestrator.run_expiry_check(
            as_of=as_of,
            threshold_days=days,
            dry_run=options['dry_run'],
        )

        if result.dry_run:
            self.stdout.write(
                f'Would notify {result.candidate_count} LPO(s) '
                f'expiring {result.threshold_days} days after {result.as_of}'
            )
            for order in result.candidates:
                self.stdout.write(f'  - {order.lpo_number} (valid until {order.valid_until})')
            return

        self.stdout.write(
            self.style.SUCCESS(
                f'Notified {len(result.notified)} of {result.candidate_count} expiring LPO(s)'
            )
        )
        for order in result.failed:
            self.stderr.write(f'  Failed: {order.lpo_number}')
