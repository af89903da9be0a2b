"""IBKR Flex Query XML parser."""

import logging
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from enum import Enum

from beatthemarket.constants import (
    CASH_SYMBOL,
    CURRENCY_CODE_PATTERN,
    INCORRECT_FORMAT_MESSAGE,
    INVALID_RESPONSE_MESSAGE,
    NOT_XML_MESSAGE,
    UNKNOWN_ACCOUNT,
    AssetCategory,
    CashFlowCategory,
    LevelOfDetail,
)
from beatthemarket.services.brokers.base_broker_parser import (
    BaseBrokerParser,
    CashReport,
    CashTransaction,
    EquitySummary,
    OpenPosition,
    ParsedReport,
    SecurityInfo,
    Transfer,
)
from beatthemarket.services.cash_flow_classifier import CashFlowClassifier

logger = logging.getLogger(__name__)


class ParseErrorCode(str, Enum):
    """Reasons a document cannot be used as a report."""

    NOT_XML = "NOT_XML"
    INCORRECT_FORMAT = "INCORRECT_FORMAT"
    INVALID_RESPONSE = "INVALID_RESPONSE"
    BROKER_ERROR = "BROKER_ERROR"


class ReportParseError(Exception):
    """Raised when a source document is not a usable Flex report."""

    def __init__(
        self,
        code: ParseErrorCode,
        message: str,
        broker_error_code: str | None = None,
    ):
        super().__init__(message)
        self.code = code
        self.message = message
        self.broker_error_code = broker_error_code


class NavShape(str, Enum):
    """Historical NAV layouts found in Flex statements."""

    IN_BASE = "EquitySummaryInBase"
    BY_REPORT_DATE = "EquitySummaryByReportDateInBase"
    NET_ASSET_VALUE = "NetAssetValue"


@dataclass
class NavRows:
    """NAV rows of one statement, resolved to a single layout."""

    shape: NavShape
    rows: list[ET.Element]
    currency: str


def parse_ibkr_date(value: str | None) -> date:
    """
    Parse an IBKR date into a date object.

    Accepts compact YYYYMMDD and ISO YYYY-MM-DD, optionally followed by a time
    part separated by whitespace, ';' or ','.

    Raises:
        ValueError: If the value is empty or not a recognizable date
    """
    if not value:
        raise ValueError("Missing date")
    day_part = value.strip().replace(";", " ").replace(",", " ").split()[0]
    for fmt in ("%Y%m%d", "%Y-%m-%d"):
        try:
            return datetime.strptime(day_part, fmt).date()
        except ValueError:
            continue
    raise ValueError(f"Unrecognized date format: {value!r}")


def to_decimal(value: str | None, default: str = "0") -> Decimal:
    """Convert an XML attribute to Decimal, using default when empty."""
    if value is None or value.strip() == "":
        return Decimal(default)
    try:
        return Decimal(value.strip())
    except InvalidOperation as e:
        raise ValueError(f"Invalid number: {value!r}") from e


def is_cash_row(element: ET.Element) -> bool:
    """
    Whether a raw position row represents a cash balance.

    A bare 3-letter uppercase symbol without an asset category is treated as a
    currency balance. A genuine 3-letter ticker exported without a category is
    misclassified by this rule.
    """
    asset_category = element.get("assetCategory") or ""
    symbol = element.get("symbol") or ""
    if asset_category == AssetCategory.CASH or symbol == CASH_SYMBOL:
        return True
    if CURRENCY_CODE_PATTERN.match(symbol) and not asset_category:
        logger.debug(f"Treating uncategorized symbol {symbol} as a cash balance")
        return True
    return False


class IBKRParser(BaseBrokerParser):
    """Parser for IBKR Flex Query XML reports."""

    @classmethod
    def broker_type(cls) -> str:
        return "ibkr"

    @classmethod
    def broker_name(cls) -> str:
        return "Interactive Brokers"

    @classmethod
    def supported_extensions(cls) -> list[str]:
        return [".xml"]

    @classmethod
    def has_api(cls) -> bool:
        return True

    def extract_date_range(self, content: bytes | str) -> tuple[date | None, date | None]:
        """Read fromDate/toDate from the first statement."""
        root = IBKRParser.load_document(content)
        statement = root.find(".//FlexStatement")
        if statement is None:
            return None, None
        return (
            IBKRParser._optional_date(statement.get("fromDate")),
            IBKRParser._optional_date(statement.get("toDate")),
        )

    def parse(self, content: bytes | str) -> ParsedReport:
        """
        Parse a Flex Query document into a ParsedReport.

        Args:
            content: Raw XML document

        Returns:
            ParsedReport with all sections extracted

        Raises:
            ReportParseError: If the document is not a Flex report
        """
        root = IBKRParser.load_document(content)
        statements = root.findall(".//FlexStatement")
        report = ParsedReport()

        # Security metadata first: positions in any statement need the multipliers
        multipliers: dict[str, Decimal] = {}
        for statement in statements:
            for info in IBKRParser.extract_securities(statement):
                report.securities_info.append(info)
                multipliers[info.symbol] = info.multiplier

        for statement in statements:
            report.cash_transactions.extend(IBKRParser.extract_cash_transactions(statement))

            transfers = IBKRParser.extract_transfers(statement)
            report.transfers.extend(transfers)
            report.cash_transactions.extend(IBKRParser.transfers_to_cash_transactions(transfers))

            report.open_positions.extend(IBKRParser.extract_positions(statement, multipliers))
            report.equity_summary.extend(IBKRParser.extract_equity_summary(statement))
            report.cash_reports.extend(IBKRParser.extract_cash_reports(statement))

        cash_position = IBKRParser.synthesize_cash_position(
            report.open_positions, report.equity_summary
        )
        if cash_position is not None:
            report.open_positions.append(cash_position)

        report.equity_summary.sort(key=lambda e: e.report_date)

        if statements:
            first = statements[0]
            report.base_currency = (
                first.get("accountCurrency")
                or first.get("currencyCode")
                or first.get("currency")
                or "USD"
            )
            report.account_id = first.get("accountId") or None
            report.from_date = IBKRParser._optional_date(first.get("fromDate"))
            report.to_date = IBKRParser._optional_date(first.get("toDate"))

        logger.info(
            f"Parsed Flex report for {report.account_id}: "
            f"{len(report.cash_transactions)} cash transactions, "
            f"{len(report.open_positions)} positions, "
            f"{len(report.equity_summary)} NAV snapshots"
        )
        return report

    @staticmethod
    def load_document(content: bytes | str) -> ET.Element:
        """
        Validate and parse a document, returning the FlexQueryResponse root.

        Raises:
            ReportParseError: With NOT_XML, INCORRECT_FORMAT, INVALID_RESPONSE or
                BROKER_ERROR depending on what was received
        """
        if isinstance(content, bytes):
            content = content.decode("utf-8-sig", errors="replace")
        if not isinstance(content, str) or not content.strip().startswith("<"):
            raise ReportParseError(ParseErrorCode.NOT_XML, NOT_XML_MESSAGE)

        try:
            root = ET.fromstring(content.strip())
        except ET.ParseError as e:
            logger.error(f"XML parsing error: {str(e)}")
            raise ReportParseError(
                ParseErrorCode.INVALID_RESPONSE, f"{INVALID_RESPONSE_MESSAGE} Malformed XML: {e}"
            ) from e

        if root.tag == "FlexQueryResponse":
            return root
        if root.tag == "FlexStatementResponse":
            error_code = root.findtext("ErrorCode")
            error_message = root.findtext("ErrorMessage") or "Check logs"
            raise ReportParseError(
                ParseErrorCode.BROKER_ERROR,
                f"IBKR Error: {error_message}",
                broker_error_code=error_code,
            )
        if root.tag == "ActivityFlexQuery":
            raise ReportParseError(ParseErrorCode.INCORRECT_FORMAT, INCORRECT_FORMAT_MESSAGE)
        raise ReportParseError(
            ParseErrorCode.INVALID_RESPONSE, f"{INVALID_RESPONSE_MESSAGE} Found: {root.tag}"
        )

    @staticmethod
    def extract_securities(statement: ET.Element) -> list[SecurityInfo]:
        """Extract security metadata from either reference-data section."""
        rows = statement.findall("SecuritiesInfo/SecurityInfo") + statement.findall(
            "FinancialInstrumentInformation/FinancialInstrumentInformation"
        )
        securities = []
        for row in rows:
            symbol = row.get("symbol")
            if not symbol:
                continue
            try:
                securities.append(
                    SecurityInfo(
                        symbol=symbol,
                        currency=row.get("currency"),
                        asset_category=row.get("assetCategory"),
                        multiplier=to_decimal(row.get("multiplier"), "1"),
                        description=row.get("description"),
                    )
                )
            except Exception as e:
                logger.error(f"Error parsing security info {symbol}: {str(e)}")
                continue
        return securities

    @staticmethod
    def extract_cash_transactions(statement: ET.Element) -> list[CashTransaction]:
        """
        Extract and classify cash transactions.

        Args:
            statement: FlexStatement element

        Returns:
            List of classified CashTransaction records
        """
        statement_account = statement.get("accountId") or UNKNOWN_ACCOUNT
        transactions = []

        for row in statement.findall("CashTransactions/CashTransaction"):
            try:
                amount = to_decimal(row.get("amount"))
                type_ = row.get("type", "")
                description = row.get("description", "")
                account_id = row.get("accountId") or statement_account
                raw_id = row.get("transactionID")

                classification = CashFlowClassifier.classify_signed(type_, description, amount)

                transactions.append(
                    CashTransaction(
                        amount=amount,
                        currency=row.get("currency", "USD"),
                        date=parse_ibkr_date(row.get("dateTime") or row.get("reportDate")),
                        description=description,
                        type=type_,
                        # Account suffix keeps ids unique across linked accounts
                        transaction_id=f"{raw_id}-{account_id}" if raw_id else None,
                        fx_rate_to_base=to_decimal(row.get("fxRateToBase"), "1"),
                        level_of_detail=row.get("levelOfDetail"),
                        account_id=account_id,
                        category=classification.category,
                        is_net_invested_flow=classification.is_net_invested_flow,
                    )
                )
            except Exception as e:
                logger.error(
                    f"Error parsing cash transaction {row.get('transactionID')}: {str(e)}"
                )
                continue

        return transactions

    @staticmethod
    def extract_transfers(statement: ET.Element) -> list[Transfer]:
        """
        Extract account transfers.

        The amount is the cash moved; for pure position transfers (cash 0) the
        position value in base currency is used instead.
        """
        statement_account = statement.get("accountId") or UNKNOWN_ACCOUNT
        transfers = []

        for row in statement.findall("Transfers/Transfer"):
            try:
                amount = to_decimal(row.get("cashTransfer"))
                if amount == 0 and row.get("positionAmountInBase"):
                    amount = to_decimal(row.get("positionAmountInBase"))

                transfers.append(
                    Transfer(
                        transaction_id=row.get("transactionID") or None,
                        type=row.get("type", ""),
                        direction=row.get("direction", ""),
                        amount=amount,
                        date=parse_ibkr_date(row.get("date") or row.get("reportDate")),
                        currency=row.get("currency", "USD"),
                        account_id=row.get("accountId") or statement_account,
                        fx_rate_to_base=to_decimal(row.get("fxRateToBase"), "1"),
                    )
                )
            except Exception as e:
                logger.error(f"Error parsing transfer {row.get('transactionID')}: {str(e)}")
                continue

        return transfers

    @staticmethod
    def transfers_to_cash_transactions(transfers: list[Transfer]) -> list[CashTransaction]:
        """Convert non-zero transfers into sign-preserving net-invested cash transactions."""
        transactions = []
        for transfer in transfers:
            if transfer.amount == 0:
                continue
            transactions.append(
                CashTransaction(
                    amount=transfer.amount,
                    currency=transfer.currency,
                    date=transfer.date,
                    description=f"Transfer {transfer.direction}: {transfer.type}",
                    type=transfer.type,
                    # Both legs of an internal transfer share the broker id
                    transaction_id=(
                        f"{transfer.transaction_id}-{transfer.account_id}"
                        if transfer.transaction_id
                        else None
                    ),
                    fx_rate_to_base=transfer.fx_rate_to_base,
                    level_of_detail=LevelOfDetail.DETAIL,
                    account_id=transfer.account_id,
                    category=(
                        CashFlowCategory.WITHDRAWAL
                        if transfer.amount < 0
                        else CashFlowCategory.DEPOSIT
                    ),
                    is_net_invested_flow=True,
                )
            )
        return transactions

    @staticmethod
    def extract_positions(
        statement: ET.Element, multipliers: dict[str, Decimal]
    ) -> list[OpenPosition]:
        """
        Extract open positions, preferring SUMMARY lines over per-lot detail.

        Cash rows are added back when the summary lines omit them, and the
        result is deduplicated by (symbol, currency), first occurrence winning.

        Args:
            statement: FlexStatement element
            multipliers: Symbol -> contract multiplier from security metadata

        Returns:
            List of OpenPosition records
        """
        rows = statement.findall("OpenPositions/OpenPosition")
        summary_rows = [r for r in rows if r.get("levelOfDetail") == LevelOfDetail.SUMMARY]
        cash_rows = [r for r in rows if is_cash_row(r)]

        if summary_rows:
            selected = list(summary_rows)
            if not any(is_cash_row(r) for r in summary_rows):
                selected.extend(cash_rows)
        else:
            selected = rows

        unique: dict[tuple[str, str], ET.Element] = {}
        for row in selected:
            key = (row.get("symbol", ""), row.get("currency", ""))
            if key not in unique:
                unique[key] = row

        positions = []
        for row in unique.values():
            symbol = row.get("symbol", "")
            try:
                if not symbol:
                    logger.warning("Skipping position without symbol")
                    continue

                multiplier = multipliers.get(symbol) or to_decimal(row.get("multiplier"), "1")

                positions.append(
                    OpenPosition(
                        symbol=symbol,
                        quantity=to_decimal(row.get("position")),
                        value=to_decimal(row.get("positionValue")),
                        currency=row.get("currency", "USD"),
                        asset_category=row.get("assetCategory") or None,
                        cost_basis_money=to_decimal(row.get("costBasisMoney")),
                        cost_basis_price=to_decimal(row.get("costBasisPrice")),
                        mark_price=to_decimal(row.get("markPrice")),
                        level_of_detail=row.get("levelOfDetail"),
                        put_call=row.get("putCall") or None,
                        strike=to_decimal(row.get("strike")),
                        expiry=row.get("expiry") or None,
                        multiplier=multiplier,
                    )
                )
            except Exception as e:
                logger.error(f"Error parsing position {symbol}: {str(e)}")
                continue

        return positions

    @staticmethod
    def select_nav_rows(statement: ET.Element) -> NavRows:
        """
        Resolve the statement's historical NAV section to one layout.

        The nested EquitySummaryInBase block wins; the flat
        EquitySummaryByReportDateInBase list is used only when it is absent, and
        NetAssetValue rows only when both are empty.
        """
        statement_currency = (
            statement.get("accountCurrency")
            or statement.get("currencyCode")
            or statement.get("currency")
            or "USD"
        )

        block = statement.find("EquitySummaryInBase")
        if block is not None:
            rows = block.findall("EquitySummaryByReportDateInBase")
            if rows:
                currency = block.get("currencyCode") or block.get("currency") or statement_currency
                return NavRows(NavShape.IN_BASE, rows, currency)

        rows = statement.findall("EquitySummaryByReportDateInBase/EquitySummaryByReportDateInBase")
        if rows:
            return NavRows(NavShape.BY_REPORT_DATE, rows, statement_currency)

        rows = statement.findall("NetAssetValueInBase/NetAssetValueInBase") or statement.findall(
            "NetAssetValue/NetAssetValue"
        )
        return NavRows(NavShape.NET_ASSET_VALUE, rows, statement_currency)

    @staticmethod
    def extract_equity_summary(statement: ET.Element) -> list[EquitySummary]:
        """Extract NAV snapshots in canonical form."""
        nav_rows = IBKRParser.select_nav_rows(statement)
        statement_account = statement.get("accountId") or UNKNOWN_ACCOUNT
        summaries = []

        for row in nav_rows.rows:
            try:
                if nav_rows.shape == NavShape.NET_ASSET_VALUE:
                    report_date = parse_ibkr_date(row.get("reportDate") or row.get("date"))
                    total = to_decimal(
                        row.get("total")
                        or row.get("netLiquidation")
                        or row.get("nav")
                        or row.get("amount")
                    )
                else:
                    report_date = parse_ibkr_date(row.get("reportDate"))
                    total = to_decimal(row.get("total"))

                summaries.append(
                    EquitySummary(
                        report_date=report_date,
                        total=total,
                        cash=to_decimal(row.get("cash")),
                        currency=row.get("currency") or nav_rows.currency,
                        account_id=row.get("accountId") or statement_account,
                    )
                )
            except Exception as e:
                logger.error(f"Error parsing NAV row {row.get('reportDate')}: {str(e)}")
                continue

        return summaries

    @staticmethod
    def extract_cash_reports(statement: ET.Element) -> list[CashReport]:
        """Extract per-currency cash balances, skipping the BASE_SUMMARY row."""
        reports = []
        for row in statement.findall("CashReport/CashReportCurrency"):
            currency = row.get("currencyCode") or row.get("currency")
            if not currency or currency == "BASE_SUMMARY":
                continue
            try:
                reports.append(
                    CashReport(
                        currency=currency,
                        total_cash=to_decimal(row.get("total") or row.get("endingCash")),
                        settled_cash=to_decimal(
                            row.get("settledCash") or row.get("endingSettledCash")
                        ),
                        accrued_cash=to_decimal(row.get("accruedCash")),
                    )
                )
            except Exception as e:
                logger.error(f"Error parsing cash report {currency}: {str(e)}")
                continue
        return reports

    @staticmethod
    def synthesize_cash_position(
        positions: list[OpenPosition], equity_summary: list[EquitySummary]
    ) -> OpenPosition | None:
        """Build a CASH position from the latest NAV snapshot when none was exported."""
        if not equity_summary:
            return None

        latest = max(equity_summary, key=lambda e: e.report_date)
        if latest.cash == 0:
            return None

        has_cash = any(
            p.asset_category == AssetCategory.CASH
            or p.symbol == CASH_SYMBOL
            or (not p.asset_category and CURRENCY_CODE_PATTERN.match(p.symbol))
            for p in positions
        )
        if has_cash:
            return None

        logger.info(f"Synthesizing CASH position of {latest.cash} from {latest.report_date} NAV")
        return OpenPosition(
            symbol=CASH_SYMBOL,
            quantity=latest.cash,
            value=latest.cash,
            currency=latest.currency,
            asset_category=AssetCategory.CASH,
            cost_basis_money=latest.cash,
            cost_basis_price=Decimal("1"),
            mark_price=Decimal("1"),
            level_of_detail=LevelOfDetail.SUMMARY,
        )

    @staticmethod
    def _optional_date(value: str | None) -> date | None:
        if not value:
            return None
        try:
            return parse_ibkr_date(value)
        except ValueError:
            logger.warning(f"Ignoring unparseable statement date {value!r}")
            return None
