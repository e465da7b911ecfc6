from __future__ import annotations

from decimal import Decimal

from django.core.management.base import BaseCommand, CommandError

from investorsarena.errors import ArenaError
from portfolios.ledger import quantize_money, replay
from portfolios.models import Portfolio


class Command(BaseCommand):
    help = (
        "Replay every portfolio's transaction history from its starting cash and report portfolios whose "
        "stored cash or holdings disagree with the replay."
    )

    def add_arguments(self, parser):
        parser.add_argument(
            "--league-id",
            type=int,
            default=None,
            help="Optionally restrict the audit to a single league id.",
        )
        parser.add_argument(
            "--fail-on-mismatch",
            action="store_true",
            help="Exit non-zero when any portfolio disagrees with its history.",
        )

    def handle(self, *args, **options):
        league_id = options.get("league_id")
        qs = Portfolio.objects.prefetch_related("holdings").order_by("id")
        if league_id:
            qs = qs.filter(league_id=league_id)

        checked = 0
        mismatched = 0
        for portfolio in qs.iterator(chunk_size=200):
            checked += 1
            problems = self._audit(portfolio)
            if problems:
                mismatched += 1
                self.stdout.write(
                    self.style.WARNING(f"Portfolio {portfolio.id} (league {portfolio.league_id}, user {portfolio.user_id}):")
                )
                for line in problems:
                    self.stdout.write(f"  - {line}")

        summary = f"Audited {checked} portfolio(s); {mismatched} mismatch(es)."
        if mismatched:
            self.stdout.write(self.style.WARNING(summary))
            if options.get("fail_on_mismatch"):
                raise CommandError(summary)
        else:
            self.stdout.write(self.style.SUCCESS(summary))

    def _audit(self, portfolio: Portfolio) -> list[str]:
        entries = portfolio.transactions.order_by("timestamp", "id")
        try:
            state = replay(starting_cash=portfolio.starting_cash, entries=entries)
        except ArenaError as e:
            return [f"history cannot be replayed: {e.message}"]

        problems = []
        expected_cash = quantize_money(state.cash_balance)
        if expected_cash != portfolio.cash_balance:
            problems.append(f"cash {portfolio.cash_balance} != replayed {expected_cash}")

        stored = {h.symbol: h for h in portfolio.holdings.all()}
        for symbol in sorted(set(stored) | set(state.holdings)):
            have = stored.get(symbol)
            want = state.holdings.get(symbol)
            if want is None:
                problems.append(f"{symbol}: stored {have.quantity} share(s), replay has none")
            elif have is None:
                problems.append(f"{symbol}: replay has {want.quantity} share(s), none stored")
            elif have.quantity != want.quantity or Decimal(have.average_price) != want.average_price:
                problems.append(
                    f"{symbol}: stored {have.quantity} @ {have.average_price}, "
                    f"replayed {want.quantity} @ {want.average_price}"
                )
        return problems
