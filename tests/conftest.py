"""Shared fixtures for the portfolio engine tests."""

import pandas as pd
import pytest


@pytest.fixture
def sample_positions():
    return [
        {
            "id": "p-vti",
            "ticker": "VTI",
            "name": "Vanguard Total Stock Market ETF",
            "assetClass": "ETF",
            "accountType": "Taxable",
            "quantity": 10,
            "costBasisPerUnit": 200.0,
            "currentPrice": 250.0,
            "currency": "USD",
            "purchaseDate": "2024-01-02",
        },
        {
            "id": "p-bnd",
            "ticker": "BND",
            "name": "Vanguard Total Bond Market ETF",
            "assetClass": "Bond",
            "accountType": "Roth IRA",
            "quantity": 20,
            "costBasisPerUnit": 75.0,
            "currentPrice": 72.5,
            "currency": "USD",
            "purchaseDate": "2024-01-02",
        },
        {
            "id": "p-spaxx",
            "ticker": "SPAXX",
            "name": "Fidelity Government Money Market",
            "assetClass": "Money Market",
            "accountType": "Taxable",
            "quantity": 1,
            "costBasisPerUnit": 550.0,
            "currentPrice": 1,
            "currency": "USD",
        },
    ]


@pytest.fixture
def sample_state(sample_positions):
    return {
        "profile": {
            "name": "Test Investor",
            "riskLevel": 3,
            "investmentHorizonYears": 10,
            "monthlyContribution": 100,
            "primaryGoal": "Retirement",
        },
        "positions": sample_positions,
        "transactions": [],
        "snapshots": [],
        "lastUpdated": None,
    }


def make_closes(columns, start="2024-01-02", periods=30, step=1.0, base=100.0):
    """Wide close frame on business days, each column rising by `step` per day."""
    index = pd.bdate_range(start=start, periods=periods)
    data = {c: [base + i * step for i in range(periods)] for c in columns}
    return pd.DataFrame(data, index=index)


@pytest.fixture
def fake_provider():
    """History provider returning synthetic closes and recording its calls."""
    calls = []

    def provider(tickers, start, end):
        calls.append((list(tickers), start, end))
        df = make_closes(tickers)
        df.attrs["errors"] = []
        return df

    provider.calls = calls
    return provider


@pytest.fixture
def failing_provider():
    def provider(tickers, start, end):
        raise RuntimeError("network down")

    return provider
