"""Shared builders for the test suite (reference data, entries, API)."""

import itertools
from datetime import date
from typing import Optional

from caixa_core.api import FinanceAPI
from caixa_core.config import AppConfig
from caixa_core.db import (
    DatabaseConfig,
    init_database,
    save_accounts,
    save_branches,
    save_channels,
    save_cost_centers,
)
from caixa_core.models import (
    Account,
    AccountType,
    BankStatementLine,
    Branch,
    CashflowCategory,
    Channel,
    CostCenter,
    CostClassification,
    EntryStatus,
    EntryType,
    ExpenseNature,
    LedgerEntry,
    RevenueGroup,
)

ACCOUNTS = [
    Account(
        "3.01",
        "Vendas de serviços",
        AccountType.REVENUE,
        "RECEITA_BRUTA",
        "SERVICOS",
        CashflowCategory.OPERATING,
    ),
    Account(
        "3.02",
        "Rendimentos de aplicações",
        AccountType.REVENUE,
        "RESULTADO_FINANCEIRO",
        "RECEITAS_FINANCEIRAS",
        CashflowCategory.OPERATING,
    ),
    Account(
        "4.01",
        "Custo das mercadorias vendidas",
        AccountType.COST,
        "CUSTOS",
        "CMV",
        CashflowCategory.OPERATING,
        ExpenseNature.VARIABLE,
        CostClassification.CMV,
    ),
    Account(
        "4.02",
        "Insumos de atendimento",
        AccountType.COST,
        "CUSTOS",
        "CMA",
        CashflowCategory.OPERATING,
        ExpenseNature.VARIABLE,
        CostClassification.CMA,
    ),
    Account(
        "5.01",
        "Aluguel",
        AccountType.EXPENSE,
        "DESPESAS_OPERACIONAIS",
        "OCUPACAO",
        CashflowCategory.OPERATING,
        ExpenseNature.FIXED,
    ),
    Account(
        "5.02",
        "Marketing digital",
        AccountType.EXPENSE,
        "DESPESAS_OPERACIONAIS",
        "MARKETING",
        CashflowCategory.OPERATING,
        ExpenseNature.VARIABLE,
    ),
    Account(
        "6.01",
        "Juros de empréstimos",
        AccountType.EXPENSE,
        "RESULTADO_FINANCEIRO",
        "DESPESAS_FINANCEIRAS",
        CashflowCategory.FINANCING,
    ),
    Account(
        "7.01",
        "Compra de equipamentos",
        AccountType.EXPENSE,
        "INVESTIMENTOS",
        None,
        CashflowCategory.INVESTING,
    ),
]

BRANCHES = [
    Branch("F01", "Matriz"),
    Branch("F02", "Filial Centro"),
    Branch("F03", "Filial Antiga", active=False),
]

CHANNELS = [
    Channel("LOJA", "Loja física", RevenueGroup.SERVICES),
    Channel("ONLINE", "Loja online", RevenueGroup.RESALE),
]

COST_CENTERS = [CostCenter("ADM", "Administrativo"), CostCenter("COM", "Comercial")]

_ids = itertools.count(1)
_UNSET = object()


def make_tmp_db_cfg(tmp_path) -> DatabaseConfig:
    """Helper to build a DatabaseConfig pointing to a temporary SQLite file."""
    return DatabaseConfig(engine="sqlite", path=tmp_path / "caixa_test.sqlite")


def seed_reference_data(cfg: DatabaseConfig) -> None:
    init_database(cfg)
    save_accounts(cfg, ACCOUNTS)
    save_branches(cfg, BRANCHES)
    save_channels(cfg, CHANNELS)
    save_cost_centers(cfg, COST_CENTERS)


def make_api(tmp_path, **config_overrides) -> FinanceAPI:
    """FinanceAPI over a fresh temporary database with the reference data above."""
    cfg = make_tmp_db_cfg(tmp_path)
    seed_reference_data(cfg)
    return FinanceAPI.from_config(AppConfig(database=cfg, **config_overrides))


def entry(
    entry_id: Optional[str] = None,
    *,
    accrual: date = date(2025, 3, 10),
    type: EntryType = EntryType.RECEIVABLE,
    status: EntryStatus = EntryStatus.REALIZED,
    payment=_UNSET,
    due: Optional[date] = None,
    branch: str = "F01",
    account: str = "3.01",
    gross: float = 1000.0,
    discount: float = 0.0,
    interest: float = 0.0,
    penalty: float = 0.0,
    channel: Optional[str] = None,
    description: str = "Lançamento de teste",
) -> LedgerEntry:
    """
    Build a ledger entry with sensible defaults.

    A REALIZED entry is paid on its accrual date unless ``payment`` is given.
    """
    if payment is _UNSET:
        payment = accrual if status is EntryStatus.REALIZED else None
    return LedgerEntry.build(
        id=entry_id or f"T-{next(_ids):05d}",
        accrual_date=accrual,
        due_date=due,
        payment_date=payment,
        type=type,
        status=status,
        branch_id=branch,
        management_account=account,
        channel_id=channel,
        description=description,
        gross_amount=gross,
        discount=discount,
        interest=interest,
        penalty=penalty,
    )


def payable(entry_id: Optional[str] = None, **kwargs) -> LedgerEntry:
    kwargs.setdefault("account", "5.01")
    return entry(entry_id, type=EntryType.PAYABLE, **kwargs)


def add_entries(api: FinanceAPI, *entries: LedgerEntry) -> None:
    """Store entries as they are (ids included), bypassing the ledger service."""
    for item in entries:
        api.ledger.store.create_entry(item)
    api.cache.invalidate_reports()


def statement(
    line_id: str,
    movement: date,
    amount: float,
    bank_account: str = "ITAU-001",
    memo: str = "PIX",
) -> BankStatementLine:
    return BankStatementLine(
        id=line_id,
        movement_date=movement,
        bank_account=bank_account,
        memo=memo,
        amount=amount,
    )


def add_statements(api: FinanceAPI, *lines: BankStatementLine) -> None:
    api.matcher.statements.import_statements(lines)
