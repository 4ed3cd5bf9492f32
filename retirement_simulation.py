import logging
import math
import pandas as pd
from dataclasses import dataclass, field, replace
from typing import Dict, List, Tuple
from datetime import datetime

from contribution_limits import (
    IRS_LIMITS,
    clamp_catch_up,
    irs_max_contribution,
    max_declared_catch_up,
    projected_limit,
)

logger = logging.getLogger(__name__)

# =============================================================================
# GLOBAL CONFIGURATION
# =============================================================================
ACCOUNTS = ("deferred", "tax_free", "medical", "taxable", "cash")

PENALTY_FREE_AGE = 59.5
EMPLOYER_DEPOSIT_MONTH = 7     # Match and profit sharing land in July
RATE_GRANULARITY = 0.0025      # Rates are entered in 0.25% steps

# IRS Uniform Lifetime Table
RMD_DISTRIBUTION_PERIODS = {
    73: 26.5, 74: 25.5, 75: 24.6, 76: 23.7, 77: 22.9, 78: 22.0, 79: 21.1,
    80: 20.2, 81: 19.4, 82: 18.5, 83: 17.7, 84: 16.8, 85: 16.0, 86: 15.2,
    87: 14.4, 88: 13.7, 89: 12.9, 90: 12.2, 91: 11.5, 92: 10.8, 93: 10.1,
    94: 9.5, 95: 8.9, 96: 8.4, 97: 7.8, 98: 7.3, 99: 6.8, 100: 6.4
}

# Withdrawal priority: penalty-free accounts first while under 59.5,
# tax-deferred first once penalties no longer apply.
EARLY_WITHDRAWAL_ORDER = ("taxable", "cash", "tax_free", "medical", "deferred")
STANDARD_WITHDRAWAL_ORDER = ("deferred", "tax_free", "medical", "taxable", "cash")

# =============================================================================
# DATA MODELS
# =============================================================================

@dataclass
class SimParameters:
    """Inputs for the retirement projection."""
    # Mandatory fields
    current_age: int
    retirement_age: int
    death_age: int

    # Starting balances
    deferred_balance: float = 15000.0
    tax_free_balance: float = 5000.0
    medical_balance: float = 2000.0
    taxable_balance: float = 0.0
    cash_balance: float = 5000.0

    # Contributions (annual amount and fixed yearly increase)
    annual_deferred_contribution: float = 3000.0
    annual_tax_free_contribution: float = 3000.0
    annual_medical_contribution: float = 2000.0
    annual_taxable_contribution: float = 0.0
    annual_cash_contribution: float = 0.0
    deferred_contribution_increase: float = 500.0
    tax_free_contribution_increase: float = 100.0
    medical_contribution_increase: float = 100.0
    taxable_contribution_increase: float = 0.0
    cash_contribution_increase: float = 0.0

    # Catch-up (medical uses its own age from IRS_LIMITS)
    catch_up_age: int = 50
    deferred_catch_up: float = 8000.0
    tax_free_catch_up: float = 1100.0
    medical_catch_up: float = 1000.0

    # Employer
    employer_match_rate: float = 0.5       # Fraction of employee rate matched
    employer_match_ceiling: float = 0.06   # Max employee rate (of salary) matched
    profit_sharing_rate: float = 0.03

    # Retirement withdrawals
    annual_withdrawal: float = 50000.0
    withdrawal_tax_rate: float = 0.22
    early_withdrawal_penalty_rate: float = 0.10
    rmd_start_age: int = 73

    # Growth & Economics
    retirement_return_rate: float = 0.07   # deferred and tax_free
    taxable_return_rate: float = 0.08
    savings_return_rate: float = 0.02      # medical and cash
    annual_salary: float = 50000.0
    salary_increase_rate: float = 0.03

    # Optional fields
    start_year: int = field(default_factory=lambda: datetime.now().year)

    def starting_balances(self) -> Dict[str, float]:
        return {account: getattr(self, f"{account}_balance") for account in ACCOUNTS}

    def starting_contributions(self) -> Dict[str, float]:
        return {account: getattr(self, f"annual_{account}_contribution") for account in ACCOUNTS}

    def contribution_increases(self) -> Dict[str, float]:
        return {account: getattr(self, f"{account}_contribution_increase") for account in ACCOUNTS}

    def monthly_return_rates(self) -> Dict[str, float]:
        return {
            "deferred": self.retirement_return_rate / 12,
            "tax_free": self.retirement_return_rate / 12,
            "medical": self.savings_return_rate / 12,
            "taxable": self.taxable_return_rate / 12,
            "cash": self.savings_return_rate / 12,
        }

RATE_FIELDS = (
    "employer_match_rate", "employer_match_ceiling", "profit_sharing_rate",
    "withdrawal_tax_rate", "early_withdrawal_penalty_rate",
    "retirement_return_rate", "taxable_return_rate", "savings_return_rate",
    "salary_increase_rate",
)

@dataclass
class AccountLedger:
    """Balances of the five accounts. Never negative."""
    deferred: float = 0.0
    tax_free: float = 0.0
    medical: float = 0.0
    taxable: float = 0.0
    cash: float = 0.0

    def balance(self, account: str) -> float:
        return getattr(self, account)

    def total(self) -> float:
        return sum(self.balance(account) for account in ACCOUNTS)

    def deposit(self, account: str, amount: float) -> None:
        setattr(self, account, self.balance(account) + amount)

    def withdraw(self, account: str, amount: float) -> float:
        """Take up to `amount`; returns what was actually taken."""
        available = self.balance(account)
        taken = min(available, amount)
        if taken <= 0:
            return 0.0
        setattr(self, account, available - taken)
        return taken

    def grow(self, monthly_rates: Dict[str, float]) -> Dict[str, float]:
        """Compound one month and return the growth credited per account."""
        growth = {}
        for account in ACCOUNTS:
            growth[account] = self.balance(account) * monthly_rates[account]
            self.deposit(account, growth[account])
        return growth

    def copy(self) -> "AccountLedger":
        return replace(self)

@dataclass
class WithdrawalResult:
    withdrawn: float = 0.0
    tax: float = 0.0
    penalty: float = 0.0
    shortfall: float = 0.0
    by_account: Dict[str, float] = field(default_factory=lambda: dict.fromkeys(ACCOUNTS, 0.0))

@dataclass
class SimulationState:
    """Everything one year hands to the next."""
    year_index: int
    ledger: AccountLedger
    contributions: Dict[str, float]    # Base annual targets, catch-up excluded
    salary: float
    prior_year_end_deferred: float     # Frozen RMD reference
    total_contributions: float

@dataclass(frozen=True)
class YearData:
    """Snapshot of financial state for a single year."""
    age: int
    year_index: int
    calendar_year: int
    is_retired: bool
    salary_income: float

    start_deferred: float
    start_tax_free: float
    start_medical: float
    start_taxable: float
    start_cash: float
    start_total: float

    contribution_deferred: float
    contribution_tax_free: float
    contribution_medical: float
    contribution_taxable: float
    contribution_cash: float
    catch_up_included: bool
    employer_contribution: float

    growth_deferred: float
    growth_tax_free: float
    growth_medical: float
    growth_taxable: float
    growth_cash: float
    total_growth: float

    withdrawal_deferred: float
    withdrawal_tax_free: float
    withdrawal_medical: float
    withdrawal_taxable: float
    withdrawal_cash: float
    withdrawals: float
    rmd_amount: float
    tax_paid: float
    penalty_paid: float

    # Closing State
    end_deferred: float
    end_tax_free: float
    end_medical: float
    end_taxable: float
    end_cash: float
    end_total: float

    total_contributions: float

    # Informational IRS headroom (standard + catch-up)
    irs_max_deferred: float
    irs_max_tax_free: float
    irs_max_medical: float

# =============================================================================
# CALCULATION ENGINE
# =============================================================================

def rmd_divisor(age: int) -> float:
    if age > 100:
        return RMD_DISTRIBUTION_PERIODS[100]
    return RMD_DISTRIBUTION_PERIODS.get(age, RMD_DISTRIBUTION_PERIODS[73])

def calculate_rmd(age: int, prior_year_end_balance: float) -> float:
    return prior_year_end_balance / rmd_divisor(age)

def withdrawal_order(age: float) -> Tuple[str, ...]:
    if age < PENALTY_FREE_AGE:
        return EARLY_WITHDRAWAL_ORDER
    return STANDARD_WITHDRAWAL_ORDER

def draw_down(ledger: AccountLedger, amount: float, age: float,
              tax_rate: float, penalty_rate: float) -> WithdrawalResult:
    """
    Satisfy `amount` from the ledger in age-dependent priority order, emptying
    each account before moving to the next. Only tax-deferred money is taxed,
    and penalised when drawn before 59.5. Whatever cannot be covered is
    returned as shortfall.
    """
    result = WithdrawalResult()
    remaining = amount
    for account in withdrawal_order(age):
        if remaining <= 0:
            break
        taken = ledger.withdraw(account, remaining)
        if taken <= 0:
            continue
        result.by_account[account] += taken
        result.withdrawn += taken
        remaining -= taken
        if account == "deferred":
            result.tax += taken * tax_rate
            if age < PENALTY_FREE_AGE:
                result.penalty += taken * penalty_rate

    result.shortfall = max(0.0, remaining)
    if result.shortfall > 0:
        logger.debug("age %s: accounts exhausted, %.2f of %.2f not covered",
                     age, result.shortfall, amount)
    return result

def applied_catch_ups(params: SimParameters, age: int, is_working: bool) -> Dict[str, float]:
    """Validated catch-up amounts actually added to this year's contributions."""
    catch_ups = dict.fromkeys(ACCOUNTS, 0.0)
    if not is_working:
        return catch_ups

    if age >= params.catch_up_age:
        super_tier = IRS_LIMITS["deferred"].super_tier
        if super_tier.applies(age):
            catch_ups["deferred"] = clamp_catch_up(params.deferred_catch_up, "deferred", age)
        else:
            # Outside 60-63 the standard ceiling applies even if more was declared
            catch_ups["deferred"] = min(params.deferred_catch_up, IRS_LIMITS["deferred"].catch_up)
        catch_ups["tax_free"] = clamp_catch_up(params.tax_free_catch_up, "tax_free", age)

    if age >= IRS_LIMITS["medical"].catch_up_age:
        catch_ups["medical"] = clamp_catch_up(params.medical_catch_up, "medical", age)
    return catch_ups

def employer_contribution(annual_deferred: float, salary: float, params: SimParameters) -> float:
    """Employer match on the employee's deferral rate plus profit sharing."""
    if salary <= 0:
        return 0.0
    employee_rate = annual_deferred / salary
    matchable_rate = min(employee_rate, params.employer_match_ceiling)
    match = salary * matchable_rate * params.employer_match_rate
    return match + salary * params.profit_sharing_rate

def initial_state(params: SimParameters) -> SimulationState:
    balances = params.starting_balances()
    return SimulationState(
        year_index=0,
        ledger=AccountLedger(**balances),
        contributions=params.starting_contributions(),
        salary=params.annual_salary,
        prior_year_end_deferred=params.deferred_balance,
        total_contributions=sum(balances.values()),
    )

def _escalate_contributions(state: SimulationState, params: SimParameters, age: int) -> Dict[str, float]:
    """Next year's base targets, limited accounts capped at the projected standard limit."""
    increases = params.contribution_increases()
    escalated = {}
    for account in ACCOUNTS:
        amount = state.contributions[account] + increases[account]
        if account in IRS_LIMITS:
            standard_ceiling, _ = projected_limit(account, state.year_index + 1, age + 1)
            amount = min(amount, standard_ceiling)
        escalated[account] = amount
    return escalated

def calculate_year(state: SimulationState, params: SimParameters) -> Tuple[YearData, SimulationState]:
    """Advance one year of twelve monthly steps. The input state is left untouched."""
    year = state.year_index
    age = params.current_age + year
    is_working = age <= params.retirement_age
    is_final_year = year >= params.death_age - params.current_age

    ledger = state.ledger.copy()
    start = state.ledger
    monthly_rates = params.monthly_return_rates()

    # 1. Contribution targets
    catch_ups = applied_catch_ups(params, age, is_working)
    targets = {account: state.contributions[account] + catch_ups[account] for account in ACCOUNTS}

    # 2. Withdrawal target (RMD fixed for the year from last year's closing balance)
    rmd_amt = 0.0
    monthly_withdrawal = 0.0
    if not is_working:
        monthly_withdrawal = params.annual_withdrawal / 12
        if age >= params.rmd_start_age:
            rmd_amt = calculate_rmd(age, state.prior_year_end_deferred)
            monthly_withdrawal = max(rmd_amt, params.annual_withdrawal) / 12
            logger.debug("age %d: RMD %.2f on prior balance %.2f", age, rmd_amt,
                         state.prior_year_end_deferred)

    contributions = dict.fromkeys(ACCOUNTS, 0.0)
    growth = dict.fromkeys(ACCOUNTS, 0.0)
    withdrawn = dict.fromkeys(ACCOUNTS, 0.0)
    employer = 0.0
    tax_paid = 0.0
    penalty_paid = 0.0

    # 3. Monthly steps
    for month in range(1, 13):
        if is_working:
            for account in ACCOUNTS:
                monthly = targets[account] / 12
                ledger.deposit(account, monthly)
                contributions[account] += monthly
        else:
            result = draw_down(ledger, monthly_withdrawal, age,
                               params.withdrawal_tax_rate, params.early_withdrawal_penalty_rate)
            for account, amount in result.by_account.items():
                withdrawn[account] += amount
            tax_paid += result.tax
            penalty_paid += result.penalty

        for account, amount in ledger.grow(monthly_rates).items():
            growth[account] += amount

        if is_working and month == EMPLOYER_DEPOSIT_MONTH:
            employer = employer_contribution(targets["deferred"], state.salary, params)
            ledger.deposit("deferred", employer)

    total_contributions = state.total_contributions + sum(contributions.values()) + employer

    record = YearData(
        age=age, year_index=year, calendar_year=params.start_year + year,
        is_retired=not is_working,
        salary_income=state.salary if is_working else 0.0,
        start_deferred=start.deferred, start_tax_free=start.tax_free, start_medical=start.medical,
        start_taxable=start.taxable, start_cash=start.cash, start_total=start.total(),
        contribution_deferred=contributions["deferred"], contribution_tax_free=contributions["tax_free"],
        contribution_medical=contributions["medical"], contribution_taxable=contributions["taxable"],
        contribution_cash=contributions["cash"],
        catch_up_included=is_working and age >= params.catch_up_age,
        employer_contribution=employer,
        growth_deferred=growth["deferred"], growth_tax_free=growth["tax_free"],
        growth_medical=growth["medical"], growth_taxable=growth["taxable"], growth_cash=growth["cash"],
        total_growth=sum(growth.values()),
        withdrawal_deferred=withdrawn["deferred"], withdrawal_tax_free=withdrawn["tax_free"],
        withdrawal_medical=withdrawn["medical"], withdrawal_taxable=withdrawn["taxable"],
        withdrawal_cash=withdrawn["cash"], withdrawals=sum(withdrawn.values()),
        rmd_amount=rmd_amt, tax_paid=tax_paid, penalty_paid=penalty_paid,
        end_deferred=ledger.deferred, end_tax_free=ledger.tax_free, end_medical=ledger.medical,
        end_taxable=ledger.taxable, end_cash=ledger.cash, end_total=ledger.total(),
        total_contributions=total_contributions,
        irs_max_deferred=irs_max_contribution("deferred", year, age),
        irs_max_tax_free=irs_max_contribution("tax_free", year, age),
        irs_max_medical=irs_max_contribution("medical", year, age),
    )

    # 4. Carry forward (escalation only while working)
    next_contributions = dict(state.contributions)
    next_salary = state.salary
    if is_working and not is_final_year:
        next_contributions = _escalate_contributions(state, params, age)
        next_salary = state.salary * (1 + params.salary_increase_rate)

    next_state = SimulationState(
        year_index=year + 1,
        ledger=ledger,
        contributions=next_contributions,
        salary=next_salary,
        prior_year_end_deferred=ledger.deferred,
        total_contributions=total_contributions,
    )
    return record, next_state

def simulate(params: SimParameters) -> List[YearData]:
    """One record per age from current age to death age, in order."""
    history = []
    state = initial_state(params)
    for _ in range(params.death_age - params.current_age + 1):
        record, state = calculate_year(state, params)
        history.append(record)
    return history

def run_simulation(params: SimParameters) -> pd.DataFrame:
    return pd.DataFrame([vars(d) for d in simulate(params)])

def summarize_results(df_results: pd.DataFrame) -> Dict[str, float]:
    """Headline figures over a full run."""
    if df_results.empty:
        return dict.fromkeys(
            ("final_balance", "total_contributions", "total_growth", "total_tax_paid", "total_penalties"), 0.0
        )
    last = df_results.iloc[-1]
    return {
        "final_balance": float(last["end_total"]),
        "total_contributions": float(last["total_contributions"]),
        "total_growth": float(df_results["total_growth"].sum()),
        "total_tax_paid": float(df_results["tax_paid"].sum()),
        "total_penalties": float(df_results["penalty_paid"].sum()),
    }

# =============================================================================
# INPUT SANITISING
# =============================================================================

def round_rate(value: float, step: float = RATE_GRANULARITY) -> float:
    """Snap a fractional rate to the nearest `step` to avoid float drift between runs."""
    steps = round(1 / step)
    # Halves round up, as the input form does
    return round(math.floor(value * steps + 0.5) / steps, 10)

def sanitize_parameters(params: SimParameters) -> SimParameters:
    """Round rates and cap declared catch-ups the way the input form does."""
    updates = {name: round_rate(getattr(params, name)) for name in RATE_FIELDS}
    for account in IRS_LIMITS:
        name = f"{account}_catch_up"
        updates[name] = min(getattr(params, name), max_declared_catch_up(account))
    return replace(params, **updates)

if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)

    params = sanitize_parameters(SimParameters(current_age=30, retirement_age=65, death_age=90))
    logger.info("Projecting ages %d-%d (retire after %d)",
                params.current_age, params.death_age, params.retirement_age)

    df_results = run_simulation(params)
    columns = (["age", "salary_income", "employer_contribution", "withdrawals", "rmd_amount",
                "tax_paid", "penalty_paid"] + [f"end_{account}" for account in ACCOUNTS] + ["end_total"])
    print(df_results[columns].round(0).to_string(index=False))

    for label, value in summarize_results(df_results).items():
        print(f"{label.replace('_', ' ').title()}: ${value:,.0f}")
