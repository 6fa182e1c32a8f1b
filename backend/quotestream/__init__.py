"""quotestream: shared realtime quote subscriptions over one upstream feed."""
