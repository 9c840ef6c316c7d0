# Caixa Core - Financial computation & reconciliation engine for SMBs
# Copyright (c) 2025 Maxence Bernard (maxencebernardhub)
# Licensed under the MIT License. See LICENSE file for details.

"""
View utilities for Caixa Core.

Formatting helpers for Brazilian money and percentages, and functions that
turn computed reports into display-ready DataFrames for the CLI. The
numbers are formatted as text here; the raw report tables live in
reports.py.
"""

import math
from collections.abc import Iterable

import pandas as pd

from .cashflow import DFCReport
from .dre import DREStatement
from .kpi import CalculatedKPI, DashboardData, MonthlyKPIs
from .models import CashflowLine, MatchSuggestion
from .reports import RevenueReport, dfc_report_to_dataframe


def format_brl(value: float) -> str:
    """Format a number as Brazilian reais (R$ 150.000,50)."""
    text = f"{abs(value):,.2f}".replace(",", "X").replace(".", ",").replace("X", ".")
    return f"-R$ {text}" if value < 0 else f"R$ {text}"


def format_percent(value: float, decimals: int = 1) -> str:
    """Format a percentage with a decimal comma (23,5%)."""
    return f"{value:.{decimals}f}%".replace(".", ",")


def format_months(value: float) -> str:
    """Readable runway: ``1a 3m``, ``7m``, ``99+ meses``."""
    if math.isinf(value) or value >= 99:
        return "99+ meses"
    if value <= 0:
        return "0 meses"
    years = int(value // 12)
    months = int(value % 12)
    if years > 0 and months > 0:
        return f"{years}a {months}m"
    if years > 0:
        return f"{years}a"
    return f"{months}m"


def format_kpi_value(kpi: CalculatedKPI) -> str:
    unit = kpi.unit.value
    if unit == "%":
        return format_percent(kpi.value, 2)
    if unit in ("R$", "R$/UNID"):
        return format_brl(kpi.value)
    if unit == "DIAS":
        return f"{kpi.value:g} dias"
    return f"{kpi.value:.2f}"


# ---------------------------------------------------------------------------
# Report views
# ---------------------------------------------------------------------------


def dre_view(statement: DREStatement) -> pd.DataFrame:
    """DRE summary lines with formatted values, in presentation order."""
    s = statement.summary
    rows = [
        ("Receita Bruta", format_brl(s.gross_revenue)),
        ("(-) Deduções", format_brl(-s.deductions)),
        ("Receita Líquida", format_brl(s.net_revenue)),
        ("(-) Custos", format_brl(-s.cost)),
        ("Lucro Bruto", format_brl(s.gross_margin)),
        ("Margem Bruta", format_percent(s.gross_margin_pct, 2)),
        ("(-) Despesas Operacionais", format_brl(-s.operating_expense)),
        ("EBITDA", format_brl(s.ebitda)),
        ("EBITDA %", format_percent(s.ebitda_pct, 2)),
        ("Resultado Financeiro", format_brl(s.financial_result)),
        ("Lucro Líquido", format_brl(s.net_income)),
        ("Margem Líquida", format_percent(s.net_margin, 2)),
    ]
    return pd.DataFrame(rows, columns=["item", "valor"])


def dfc_view(report: DFCReport) -> pd.DataFrame:
    df = dfc_report_to_dataframe(report)
    for column in ("inflow", "outflow", "net"):
        df[column] = df[column].map(format_brl)
    return df.rename(
        columns={"category": "categoria", "inflow": "entradas", "outflow": "saidas", "net": "liquido"}
    )


def cashflow_view(lines: Iterable[CashflowLine]) -> pd.DataFrame:
    rows = [
        {
            "data": line.date.isoformat(),
            "tipo": line.direction.value,
            "categoria": line.category.value,
            "descricao": line.description,
            "valor": format_brl(line.signed_value),
        }
        for line in lines
    ]
    return pd.DataFrame(rows, columns=["data", "tipo", "categoria", "descricao", "valor"])


def kpis_view(kpis: Iterable[CalculatedKPI]) -> pd.DataFrame:
    rows = [
        {
            "indicador": kpi.metric.value,
            "valor": format_kpi_value(kpi),
            "faixa": kpi.range.value if kpi.range else "-",
        }
        for kpi in kpis
    ]
    return pd.DataFrame(rows, columns=["indicador", "valor", "faixa"])


def monthly_kpis_view(kpis: MonthlyKPIs) -> pd.DataFrame:
    rows = [
        ("Receita Bruta", format_brl(kpis.gross_revenue)),
        ("Lucro Líquido", format_brl(kpis.net_income)),
        ("ROI", format_percent(kpis.roi, 2)),
        ("Liquidez Corrente", f"{kpis.current_liquidity:.2f}"),
        ("Saldo de Caixa", format_brl(kpis.cash_balance)),
        ("Burn Rate", format_brl(kpis.burn_rate)),
        ("Runway", format_months(kpis.runway_months)),
        ("Crescimento da Receita", format_percent(kpis.revenue_growth_pct, 2)),
        ("Ticket Médio", format_brl(kpis.average_ticket)),
        ("Inadimplência", format_percent(kpis.delinquency_rate, 2)),
        ("Prazo Médio de Recebimento", f"{kpis.avg_days_to_collect:g} dias"),
        ("Prazo Médio de Pagamento", f"{kpis.avg_days_to_pay:g} dias"),
        ("CAC", format_brl(kpis.cac)),
        ("Despesas Operacionais / Receita", format_percent(kpis.opex_ratio, 2)),
        ("Ponto de Equilíbrio", format_brl(kpis.break_even)),
    ]
    return pd.DataFrame(rows, columns=["indicador", "valor"])


def dashboard_view(data: DashboardData) -> pd.DataFrame:
    rows = [
        ("Receita Bruta", format_brl(data.gross_revenue)),
        ("Receita Líquida", format_brl(data.net_revenue)),
        ("EBITDA", format_brl(data.ebitda)),
        ("EBITDA %", format_percent(data.ebitda_pct, 2)),
        ("Saldo de Caixa", format_brl(data.cash_balance)),
    ]
    rows.extend((f"Despesa: {name}", format_brl(value)) for name, value in data.top_expenses)
    return pd.DataFrame(rows, columns=["item", "valor"])


def revenue_view(report: RevenueReport) -> pd.DataFrame:
    rows = [("Receita Bruta Total", format_brl(report.gross_revenue))]
    rows.extend((f"Filial {k}", format_brl(v)) for k, v in report.by_branch.items())
    rows.extend((f"Canal {k}", format_brl(v)) for k, v in report.by_channel.items())
    rows.append(("Variação Mês Anterior", format_brl(report.variation)))
    rows.append(("Variação %", format_percent(report.variation_pct, 2)))
    return pd.DataFrame(rows, columns=["item", "valor"])


def suggestions_view(suggestions: Iterable[MatchSuggestion]) -> pd.DataFrame:
    rows = [
        {
            "lancamento": s.ledger_entry_id,
            "confianca": s.confidence,
            "motivo": s.reason,
        }
        for s in suggestions
    ]
    return pd.DataFrame(rows, columns=["lancamento", "confianca", "motivo"])
