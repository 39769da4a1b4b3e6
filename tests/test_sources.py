# tests/test_sources.py
from datetime import date
from unittest.mock import MagicMock

import pytest
import requests

from dealflow.models import Action, DealType, Exchange
from dealflow.sources import BseSource, NseSource, create_sources


def _response(json_data=None, text=""):
    response = MagicMock()
    response.json.return_value = json_data
    response.text = text
    response.raise_for_status.return_value = None
    return response


def test_create_sources():
    sources = create_sources(timeout=5)

    assert [type(source) for source in sources] == [NseSource, BseSource]
    assert sources[0].session is not sources[1].session
    assert all(source.timeout == 5 for source in sources)


def test_nse_fetch_deals_normalizes_rows():
    session = MagicMock()
    session.headers = {}
    session.get.return_value = _response(
        {
            "data": [
                {
                    "date": "15-Jan-2024",
                    "symbol": "TCS",
                    "name": "Tata Consultancy Services",
                    "clientName": "ALPHA FUND",
                    "buyOrSell": "BUY",
                    "quantityTraded": "2,00,000",
                    "tradePrice": "3,800.50",
                },
                {"date": "15-Jan-2024", "symbol": "", "clientName": "X", "quantityTraded": "1", "tradePrice": "1"},
            ]
        }
    )
    source = NseSource(session)

    deals = source.fetch_deals(DealType.BLOCK)

    assert len(deals) == 1
    assert deals[0].exchange is Exchange.NSE
    assert deals[0].deal_type is DealType.BLOCK
    assert deals[0].quantity == 200_000
    assert "/api/block-deal" in session.get.call_args.args[0]
    assert "user-agent" in session.headers


def test_nse_prepare_failure_returns_false():
    session = MagicMock()
    session.headers = {}
    session.get.side_effect = requests.ConnectionError("refused")

    assert NseSource(session).prepare() is False


def test_nse_fetch_errors_propagate():
    session = MagicMock()
    session.headers = {}
    session.get.side_effect = requests.Timeout("slow")

    with pytest.raises(requests.RequestException):
        NseSource(session).fetch_deals(DealType.BULK)


def test_nse_fetch_delivery():
    session = MagicMock()
    session.headers = {}
    session.get.return_value = _response(
        {"securityWiseDP": {"quantityTraded": "1,000", "deliveryQuantity": "875"}}
    )

    record = NseSource(session).fetch_delivery("tcs", date(2024, 1, 15))

    assert record.symbol == "TCS"
    assert record.delivery_percent == 87.5
    assert record.exchange is Exchange.NSE


def test_nse_fetch_delivery_missing():
    session = MagicMock()
    session.headers = {}
    session.get.return_value = _response({"info": {}})

    assert NseSource(session).fetch_delivery("TCS", date(2024, 1, 15)) is None


BSE_PAGE = """
<html><body>
<table id="ContentPlaceHolder1_gvbulk_deals">
  <tr><th>Deal Date</th><th>Security Code</th><th>Security Name</th><th>Client Name</th><th>Deal Type</th><th>Quantity</th><th>Price</th></tr>
  <tr><td>15/01/2024</td><td>500325</td><td>RELIANCE</td><td>BETA CAPITAL</td><td>S</td><td>1,50,000</td><td>2,845.50</td></tr>
  <tr><td>15/01/2024</td><td>532540</td><td>TCS</td><td>ALPHA FUND</td><td>B</td><td>10,000</td><td>3,800.00</td></tr>
  <tr><td colspan="7">No more records</td></tr>
</table>
</body></html>
"""


def test_bse_fetch_deals_parses_table():
    session = MagicMock()
    session.headers = {}
    session.get.return_value = _response(text=BSE_PAGE)

    deals = BseSource(session).fetch_deals(DealType.BULK)

    assert [deal.symbol for deal in deals] == ["RELIANCE", "TCS"]
    assert deals[0].action is Action.SELL
    assert deals[0].deal_date == date(2024, 1, 15)
    assert deals[1].action is Action.BUY
    assert deals[1].quantity == 10_000


def test_bse_missing_table_yields_nothing():
    session = MagicMock()
    session.headers = {}
    session.get.return_value = _response(text="<html><body>maintenance</body></html>")

    assert BseSource(session).fetch_deals(DealType.BLOCK) == []
