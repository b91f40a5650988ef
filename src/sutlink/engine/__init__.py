"""Transaction and transfer engines"""
