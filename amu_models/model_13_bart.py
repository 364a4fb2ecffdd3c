"""
model_13_bart.py
================
Model 13: Bayesian Additive Regression Trees

Sum-of-trees model y = sum_j g(x; T_j, M_j) + e, e ~ N(0, sigma^2), fit by
Bayesian backfitting: each tree in turn is updated against the partial
residual of the others with a grow/prune Metropolis-Hastings move, its
leaf values are drawn from their conjugate normal posterior, and sigma^2
is drawn from its inverse-gamma posterior after every sweep.

Priors (Chipman, George & McCulloch defaults):
- split probability at depth d: alpha * (1 + d)^-beta
- leaf values: N(0, sigma_mu^2) with sigma_mu = 0.5 / (k * sqrt(m)) on y
  rescaled to [-0.5, 0.5]
- sigma^2: nu * lambda / chi2_nu, lambda set so P(sigma < sigma_hat) = q,
  sigma_hat from the least-squares residuals

Prediction is the posterior mean over kept draws. Importance is the
posterior inclusion proportion: the share of splits using each predictor,
averaged over kept draws.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np
from scipy import stats

from .base_model import BaseAMUModel


class _Node:
    """Tree node used while sampling; rows are the training rows it holds"""

    __slots__ = ('var', 'cut', 'left', 'right', 'mu', 'depth', 'rows')

    def __init__(self, rows: np.ndarray, depth: int = 0, mu: float = 0.0):
        self.var = -1
        self.cut = 0.0
        self.left = None
        self.right = None
        self.mu = mu
        self.depth = depth
        self.rows = rows

    @property
    def is_leaf(self) -> bool:
        return self.left is None


def _leaves(node: _Node) -> List[_Node]:
    if node.is_leaf:
        return [node]
    return _leaves(node.left) + _leaves(node.right)


def _prunable(node: _Node) -> List[_Node]:
    """Internal nodes whose children are both leaves"""
    if node.is_leaf:
        return []
    if node.left.is_leaf and node.right.is_leaf:
        return [node]
    return _prunable(node.left) + _prunable(node.right)


def _parent(node: _Node, target: _Node) -> Optional[_Node]:
    if node.is_leaf:
        return None
    if node.left is target or node.right is target:
        return node
    return _parent(node.left, target) or _parent(node.right, target)


def _parent_prunable(root: _Node, leaf: _Node) -> bool:
    """Growing `leaf` trades its prunable parent for itself, leaving the count unchanged"""
    parent = _parent(root, leaf)
    return parent is not None and parent.left.is_leaf and parent.right.is_leaf


def _split_vars(node: _Node) -> List[int]:
    if node.is_leaf:
        return []
    return [node.var] + _split_vars(node.left) + _split_vars(node.right)


def _flatten(root: _Node) -> Tuple[np.ndarray, ...]:
    """Preorder arrays (var, cut, left, right, mu); var == -1 marks a leaf"""
    var, cut, left, right, mu = [], [], [], [], []

    def visit(node):
        i = len(var)
        var.append(node.var)
        cut.append(node.cut)
        left.append(-1)
        right.append(-1)
        mu.append(node.mu)
        if not node.is_leaf:
            left[i] = visit(node.left)
            right[i] = visit(node.right)
        return i

    visit(root)
    return (np.array(var, dtype=int), np.array(cut, dtype=float),
            np.array(left, dtype=int), np.array(right, dtype=int), np.array(mu, dtype=float))


def _predict_tree(tree: Tuple[np.ndarray, ...], X: np.ndarray) -> np.ndarray:
    var, cut, left, right, mu = tree
    node = np.zeros(X.shape[0], dtype=int)
    rows = np.arange(X.shape[0])
    while True:
        internal = var[node] >= 0
        if not internal.any():
            break
        r = rows[internal]
        n = node[internal]
        go_left = X[r, var[n]] <= cut[n]
        node[r] = np.where(go_left, left[n], right[n])
    return mu[node]


@dataclass
class BARTFit:
    """Posterior draws of a BART fit, on the rescaled target"""
    draws: List[List[Tuple[np.ndarray, ...]]]
    y_min: float
    y_range: float
    sigma: np.ndarray
    inclusion: np.ndarray
    acceptance_rate: float
    mean_leaves: float
    prior: Dict[str, float] = field(default_factory=dict)

    def predict_draws(self, X: np.ndarray) -> np.ndarray:
        """(n_draws, n_rows) posterior predictive draws of the mean, original scale"""
        out = np.empty((len(self.draws), X.shape[0]))
        for d, trees in enumerate(self.draws):
            total = np.zeros(X.shape[0])
            for tree in trees:
                total += _predict_tree(tree, X)
            out[d] = total
        return (out + 0.5) * self.y_range + self.y_min


class Model13BART(BaseAMUModel):
    """
    Model 13: BART

    Key features:
    - m = 50 trees, grow/prune Metropolis-Hastings per tree per sweep
    - Conjugate normal leaves, inverse-gamma error variance
    - 200 burn-in sweeps, 300 kept draws
    """

    key = 'bart'
    has_importance = True

    def __init__(self, random_seed: int = 1, n_trees: int = 50,
                 alpha: float = 0.95, beta: float = 2.0, k: float = 2.0,
                 nu: float = 3.0, q: float = 0.90,
                 n_burn: int = 200, n_draws: int = 300):
        super().__init__(model_id=13, model_name="Bayesian Additive Regression Trees", random_seed=random_seed)
        self.n_trees = n_trees
        self.alpha = alpha
        self.beta = beta
        self.k = k
        self.nu = nu
        self.q = q
        self.n_burn = n_burn
        self.n_draws = n_draws

    # ========================================================================
    # PRIORS
    # ========================================================================

    def _split_prob(self, depth: int) -> float:
        return self.alpha * (1.0 + depth) ** (-self.beta)

    def _sigma_hat(self, X: np.ndarray, y: np.ndarray) -> float:
        n, p = X.shape
        if p >= n - 1:
            return float(np.std(y, ddof=1))
        Xc = np.column_stack([np.ones(n), X])
        coef = np.linalg.lstsq(Xc, y, rcond=None)[0]
        resid = y - Xc @ coef
        df = n - np.linalg.matrix_rank(Xc)
        if df <= 0:
            return float(np.std(y, ddof=1))
        return float(np.sqrt(resid @ resid / df))

    def _lambda(self, sigma_hat: float) -> float:
        # P(sigma^2 < sigma_hat^2) = q under sigma^2 ~ nu * lambda / chi2_nu
        return sigma_hat ** 2 * stats.chi2.ppf(1.0 - self.q, self.nu) / self.nu

    @staticmethod
    def _log_leaf(n: int, s: float, sigma2: float, tau2: float) -> float:
        """Log marginal likelihood of a leaf with n rows summing to s (mu integrated out)"""
        denom = sigma2 + n * tau2
        return 0.5 * np.log(sigma2 / denom) + tau2 * s * s / (2.0 * sigma2 * denom)

    # ========================================================================
    # TREE MOVES
    # ========================================================================

    def _grow(self, root: _Node, X: np.ndarray, r: np.ndarray, sigma2: float,
              tau2: float, rng: np.random.RandomState) -> bool:
        leaves = _leaves(root)
        leaf = leaves[rng.randint(len(leaves))]
        rows = leaf.rows

        candidates = [v for v in range(X.shape[1]) if np.unique(X[rows, v]).size > 1]
        if not candidates:
            return False
        var = candidates[rng.randint(len(candidates))]
        values = np.unique(X[rows, var])
        cuts = (values[:-1] + values[1:]) / 2.0
        cut = float(cuts[rng.randint(len(cuts))])

        go_left = X[rows, var] <= cut
        left_rows, right_rows = rows[go_left], rows[~go_left]

        d = leaf.depth
        p_d, p_child = self._split_prob(d), self._split_prob(d + 1)
        log_prior = np.log(p_d) + 2.0 * np.log(1.0 - p_child) - np.log(1.0 - p_d)

        log_lik = (self._log_leaf(len(left_rows), r[left_rows].sum(), sigma2, tau2)
                   + self._log_leaf(len(right_rows), r[right_rows].sum(), sigma2, tau2)
                   - self._log_leaf(len(rows), r[rows].sum(), sigma2, tau2))

        # Proposal: grow chosen with prob 1 from a bare root, 0.5 otherwise; reverse prune 0.5.
        # Variable and cut choice probabilities cancel against the split-rule prior.
        p_grow = 1.0 if root.is_leaf else 0.5
        n_prunable_after = len(_prunable(root)) + (0 if _parent_prunable(root, leaf) else 1)
        log_proposal = np.log(0.5 / n_prunable_after) - np.log(p_grow / len(leaves))

        if np.log(rng.uniform()) < log_lik + log_prior + log_proposal:
            leaf.var = var
            leaf.cut = cut
            leaf.left = _Node(left_rows, depth=d + 1)
            leaf.right = _Node(right_rows, depth=d + 1)
            return True
        return False

    def _prune(self, root: _Node, r: np.ndarray, sigma2: float,
               tau2: float, rng: np.random.RandomState) -> bool:
        prunable = _prunable(root)
        node = prunable[rng.randint(len(prunable))]
        n_leaves_after = len(_leaves(root)) - 1

        d = node.depth
        p_d, p_child = self._split_prob(d), self._split_prob(d + 1)
        log_prior = np.log(1.0 - p_d) - np.log(p_d) - 2.0 * np.log(1.0 - p_child)

        left_rows, right_rows = node.left.rows, node.right.rows
        log_lik = (self._log_leaf(len(node.rows), r[node.rows].sum(), sigma2, tau2)
                   - self._log_leaf(len(left_rows), r[left_rows].sum(), sigma2, tau2)
                   - self._log_leaf(len(right_rows), r[right_rows].sum(), sigma2, tau2))

        p_grow_after = 1.0 if node is root else 0.5
        log_proposal = np.log(p_grow_after / n_leaves_after) - np.log(0.5 / len(prunable))

        if np.log(rng.uniform()) < log_lik + log_prior + log_proposal:
            node.var = -1
            node.left = None
            node.right = None
            return True
        return False

    # ========================================================================
    # SAMPLER
    # ========================================================================

    def _fit_core(self, X: np.ndarray, y: np.ndarray, param: Any) -> BARTFit:
        rng = np.random.RandomState(self.random_seed)
        n, p = X.shape
        m = self.n_trees

        y_min = float(y.min())
        y_range = float(y.max() - y_min)
        if y_range <= 0:
            y_range = 1.0
        ys = (y - y_min) / y_range - 0.5

        tau2 = (0.5 / (self.k * np.sqrt(m))) ** 2
        sigma_hat = max(self._sigma_hat(X, ys), 1e-8)
        lam = self._lambda(sigma_hat)
        sigma2 = sigma_hat ** 2

        trees = [_Node(np.arange(n), mu=float(ys.mean()) / m) for _ in range(m)]
        tree_fit = np.tile(float(ys.mean()) / m, (m, n))
        total_fit = tree_fit.sum(axis=0)

        draws = []
        sigmas = []
        inclusion = np.zeros(p)
        accepted = 0
        n_leaves_kept = 0

        for sweep in range(self.n_burn + self.n_draws):
            for j, root in enumerate(trees):
                r = ys - (total_fit - tree_fit[j])

                if root.is_leaf or rng.uniform() < 0.5:
                    accepted += self._grow(root, X, r, sigma2, tau2, rng)
                else:
                    accepted += self._prune(root, r, sigma2, tau2, rng)

                new_fit = np.empty(n)
                for leaf in _leaves(root):
                    n_leaf = len(leaf.rows)
                    denom = sigma2 + n_leaf * tau2
                    mean = tau2 * r[leaf.rows].sum() / denom
                    sd = np.sqrt(sigma2 * tau2 / denom)
                    leaf.mu = float(mean + sd * rng.standard_normal())
                    new_fit[leaf.rows] = leaf.mu

                total_fit += new_fit - tree_fit[j]
                tree_fit[j] = new_fit

            sse = float(np.sum((ys - total_fit) ** 2))
            sigma2 = ((self.nu * lam + sse) / 2.0) / rng.gamma((self.nu + n) / 2.0, 1.0)

            if sweep >= self.n_burn:
                draws.append([_flatten(root) for root in trees])
                sigmas.append(np.sqrt(sigma2) * y_range)
                used = np.bincount(
                    np.array([v for root in trees for v in _split_vars(root)], dtype=int),
                    minlength=p,
                ).astype(float)
                if used.sum() > 0:
                    inclusion += used / used.sum()
                n_leaves_kept += sum(len(_leaves(root)) for root in trees)

        n_kept = max(self.n_draws, 1)
        return BARTFit(
            draws=draws,
            y_min=y_min,
            y_range=y_range,
            sigma=np.array(sigmas),
            inclusion=inclusion / n_kept,
            acceptance_rate=accepted / float((self.n_burn + self.n_draws) * m),
            mean_leaves=n_leaves_kept / float(n_kept * m),
            prior={'sigma_hat': sigma_hat * y_range, 'lambda': lam, 'sigma_mu': np.sqrt(tau2)},
        )

    def _predict_core(self, model: BARTFit, X: np.ndarray) -> np.ndarray:
        return model.predict_draws(X).mean(axis=0)

    def importance(self, model: BARTFit, X: np.ndarray, y: np.ndarray,
                   feature_names: Sequence[str]) -> Dict[str, float]:
        return {name: float(v) for name, v in zip(feature_names, model.inclusion)}

    def describe(self, model: BARTFit, X: np.ndarray, y: np.ndarray,
                 feature_names: Sequence[str]) -> Dict[str, Any]:
        self.logger.info(f"Trees: {self.n_trees}, burn-in: {self.n_burn}, kept draws: {self.n_draws}")
        self.logger.info(f"Posterior mean sigma: {model.sigma.mean():.4f}")
        self.logger.info(f"Move acceptance rate: {model.acceptance_rate:.3f}")
        self.logger.info(f"Mean leaves per tree: {model.mean_leaves:.2f}")
        return {
            'n_trees': self.n_trees,
            'n_draws': len(model.draws),
            'sigma_mean': float(model.sigma.mean()),
            'acceptance_rate': model.acceptance_rate,
            'mean_leaves_per_tree': model.mean_leaves,
            'prior': model.prior,
        }

