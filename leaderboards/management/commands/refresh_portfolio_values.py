from __future__ import annotations

from django.core.management.base import BaseCommand

from leagues.models import League
from marketdata.services import get_quote_gateway
from portfolios.valuation import QuoteMemo

from leaderboards.services import rank_league


class Command(BaseCommand):
    help = "Re-value every portfolio at current quotes and refresh the cached total values (cron-friendly)."

    def add_arguments(self, parser):
        parser.add_argument(
            "--league-id",
            type=int,
            default=None,
            help="Optionally restrict the refresh to a single league id.",
        )

    def handle(self, *args, **options):
        league_id = options.get("league_id")

        leagues_qs = League.objects.order_by("id")
        if league_id:
            leagues_qs = leagues_qs.filter(id=league_id)

        league_ids = list(leagues_qs.values_list("id", flat=True))
        if not league_ids:
            self.stdout.write("No leagues found.")
            return

        # One memo for the whole run: a symbol held across leagues is quoted once.
        quotes = QuoteMemo(get_quote_gateway())
        total = 0
        for lid in league_ids:
            rows = rank_league(lid, quotes=quotes)
            total += len(rows)
            if rows:
                leader = rows[0]
                self.stdout.write(
                    f"League {lid}: {len(rows)} portfolio(s); leader {leader.display_name} at {leader.total_value}"
                )

        self.stdout.write(self.style.SUCCESS(f"Refreshed {total} portfolio value(s) across {len(league_ids)} league(s)."))
